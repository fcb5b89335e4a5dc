"""Prompt templates for lesson content generation and question analysis."""

NO_CONTEXT = "No context provided"

LESSON_SUMMARY = (
    "Based on the following lesson transcript and student context, generate a structured summary.\n"
    "Keep parent_message polite and under 200 characters.\n\n"
    "Student Context: {student_context}\n"
    "Transcript: {transcript}\n"
)

LESSON_HOMEWORK = (
    "Based on the issues and covered topics in this transcript, suggest 3-5 specific homework items.\n\n"
    "Student Context: {student_context}\n"
    "Transcript: {transcript}\n"
)

LESSON_QUIZ = (
    "Create a mini-quiz (3-5 questions) based on the material covered in this transcript.\n"
    "Include a mix of Multiple Choice (mcq) and Short Answer (short).\n"
    "Multiple choice questions must list their choices.\n\n"
    "Student Context: {student_context}\n"
    "Transcript: {transcript}\n"
)

# Sent with the photographed question; the hint must not give away the answer.
QUESTION_ANALYSIS = (
    "この画像は小学6年生の生徒からの質問です。以下の形式で分析してください:\n"
    "1. 教科と単元の特定\n"
    "2. 問題の要点\n"
    "3. つまずきポイントの推測\n"
    "4. 簡潔なヒント（答えは書かない）\n\n"
    "画像の問題を分析してください。"
)
