"""
LLM Prompts for grading and remediation.

Contains prompts for the four AI collaborators:
- Short-answer grading (JSON object reply)
- Coding grading (forced tool call)
- Misconception detection (JSON object reply, uses the lecture concept map)
- Remediation generation (JSON object reply with a follow-up MCQ)
"""
from __future__ import annotations

from collections.abc import Sequence

from learnloop.models import ConceptSegment

# =============================================================================
# Short-Answer Grading
# =============================================================================

SHORT_ANSWER_SYSTEM_PROMPT = """You are an expert educational grader. Compare the student's answer against the expected answer and assign a grade from 0-100.

Consider:
- Correctness of key concepts
- Completeness of the answer
- Understanding demonstrated

Return ONLY a JSON object with this exact format:
{
  "grade": <number from 0-100>,
  "feedback": "<brief feedback on the answer>"
}"""


def short_answer_user_prompt(question: str, expected_answer: str, student_answer: str) -> str:
    return f"""Question: {question}

Expected Answer: {expected_answer}

Student's Answer: {student_answer}

Grade this answer from 0-100 and provide brief feedback."""


# =============================================================================
# Coding Grading
# =============================================================================

CODING_SYSTEM_PROMPT = """You are a LENIENT coding grader focused on CONCEPTUAL UNDERSTANDING, not strict correctness.

GRADING PHILOSOPHY:
- Determine whether the student UNDERSTANDS THE CONCEPT/ALGORITHM
- Minor syntax errors, off-by-one errors, typos or small bugs should NOT significantly reduce the grade
- Focus on "Did they get the right idea?" rather than "Does it compile and run perfectly?"

COMPONENT-BASED GRADING:

1. ALGORITHMIC UNDERSTANDING (0-50)
   - 45-50: Correct algorithm/approach, even with minor implementation issues
   - 20-44: Partially correct approach, missing some insights
   - 0-19: Wrong approach or no meaningful attempt

2. LOGIC CORRECTNESS (0-30)
   - 27-30: Logic is sound even if syntax has minor errors
   - 10-26: Partial logic with gaps
   - 0-9: Incorrect or no logic

3. CODE QUALITY (0-10): readable, reasonable structure

4. EDGE CASE AWARENESS (0-10): shows awareness of edge cases

TOTAL: Sum of all components (0-100)

Only significantly reduce the grade if the APPROACH is fundamentally wrong."""

CODING_TOOL_NAME = "grade_coding"

CODING_TOOL = {
    "type": "function",
    "function": {
        "name": CODING_TOOL_NAME,
        "description": "Grade a student's coding solution with lenient, concept-focused scoring",
        "parameters": {
            "type": "object",
            "properties": {
                "algorithmic_understanding": {"type": "number", "minimum": 0, "maximum": 50},
                "logic_correctness": {"type": "number", "minimum": 0, "maximum": 30},
                "code_quality": {"type": "number", "minimum": 0, "maximum": 10},
                "edge_case_awareness": {"type": "number", "minimum": 0, "maximum": 10},
                "total_grade": {"type": "number", "minimum": 0, "maximum": 100},
                "understands_concept": {
                    "type": "boolean",
                    "description": "Does the student clearly understand the core concept/algorithm?",
                },
                "feedback": {"type": "string"},
            },
            "required": [
                "algorithmic_understanding",
                "logic_correctness",
                "code_quality",
                "edge_case_awareness",
                "total_grade",
                "understands_concept",
                "feedback",
            ],
            "additionalProperties": False,
        },
    },
}


def coding_user_prompt(
    problem_statement: str,
    student_code: str,
    function_signature: str | None = None,
    language: str | None = None,
    reference_solution: str | None = None,
) -> str:
    parts = [f"Problem Statement: {problem_statement}"]
    if function_signature:
        parts.append(f"Expected Function Signature: {function_signature}")
    if language:
        parts.append(f"Language: {language}")
    if reference_solution:
        parts.append(f"Reference Solution (for comparison only):\n{reference_solution}")
    parts.append(f"Student's Code:\n```\n{student_code}\n```")
    parts.append("Grade each component with a brief justification, then the total.")
    return "\n\n".join(parts)


# =============================================================================
# Misconception Detection
# =============================================================================


def format_timestamp(seconds: float) -> str:
    """125.7 -> '2:05'"""
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


def concept_map_context(concept_map: Sequence[ConceptSegment]) -> str:
    if not concept_map:
        return "No concept map available"
    return "\n".join(
        f"- {c.concept_name} ({format_timestamp(c.start_timestamp)} - {format_timestamp(c.end_timestamp)}): "
        f"{c.description or 'No description'}"
        for c in sorted(concept_map, key=lambda c: c.start_timestamp)
    )


def misconception_system_prompt(concept_map: Sequence[ConceptSegment]) -> str:
    return f"""You are an expert educational AI that analyzes student misconceptions.
Your task is to:
1. Identify what specific concept the student misunderstood
2. Determine the root cause of the misconception
3. Find the best timestamp in the lecture to help remediate

Available concepts in this lecture:
{concept_map_context(concept_map)}

Respond ONLY with valid JSON in this exact format:
{{
  "misconception": "Brief description of what the student got wrong",
  "missingConcept": "The specific concept they need to understand",
  "rootCause": "Why they likely made this mistake",
  "recommendedTimestamp": 120.5,
  "endTimestamp": 180.0,
  "conceptName": "Name of the concept to review"
}}"""


def misconception_user_prompt(
    question_text: str,
    correct_answer: str,
    student_answer: str,
    question_type: str,
    transcript_context: str | None = None,
) -> str:
    prompt = f"""Question: {question_text}
Correct Answer: {correct_answer}
Student's Answer: {student_answer}
Question Type: {question_type}"""
    if transcript_context:
        prompt += f"\n\nRelevant Transcript Context:\n{transcript_context}"
    return prompt + "\n\nAnalyze why the student got this wrong and identify which concept they need to review."


# =============================================================================
# Remediation Generation
# =============================================================================

REMEDIATION_SYSTEM_PROMPT = """You are an expert educational AI that creates personalized remediation content.
Your task is to:
1. Generate a clear, concise explanation (2-3 sentences) that addresses the student's specific misconception
2. Create a simpler follow-up question to verify they understood the concept

The explanation should be encouraging, address the root cause directly and use simple language.
The follow-up question should be easier than the original and test the same underlying concept.

Respond ONLY with valid JSON in this exact format:
{
  "explanation": "Your personalized explanation here",
  "followUpQuestion": {
    "type": "multiple_choice",
    "question": "The simpler follow-up question",
    "options": ["A. Option 1", "B. Option 2", "C. Option 3", "D. Option 4"],
    "correctAnswer": "A",
    "explanation": "Why this is correct"
  }
}"""


def remediation_user_prompt(
    original_question: str,
    correct_answer: str,
    student_answer: str,
    misconception: str,
    missing_concept: str,
    root_cause: str,
) -> str:
    return f"""The student got this question wrong:
Question: {original_question}
Correct Answer: {correct_answer}
Student's Answer: {student_answer}

Their misconception: {misconception}
Missing concept: {missing_concept}
Root cause: {root_cause}

Generate a personalized explanation and follow-up question to help them understand."""
