"""Business services: quotas, generation, questions, notifications, users."""
