"""
Prompt builder for exam correction.

Constructs the prompts for the three oracle operations:
- grading a scanned exam image against the teacher's answer key
- re-evaluating one (possibly edited) question
- rewriting the performance summary from the current scores
"""

import json

from corrector.models import QuestionItem, SessionResult


class PromptBuilder:
    """
    Builds the grading, re-evaluation and summary prompts.

    The grading prompt enforces:
    1. Sequential reading of the exam, separating supporting texts from questions
    2. Symbol-faithful transcription (subscripts, superscripts, formulas)
    3. Feedback addressed to the student, stating the right answer when wrong
    4. A strict JSON output format
    """

    SYSTEM_PROMPT = """You are an assistant teacher specialised in correcting school exams.
You read scanned exams, transcribe them faithfully and grade each answer against the answer key
provided by the teacher. You are fair, precise and consistent.

OUTPUT RULES:
- Your output MUST be valid JSON matching the exact format specified.
- Do not add any text before or after the JSON."""

    SUMMARY_SYSTEM_PROMPT = """You are an experienced teacher writing the performance summary of a corrected exam.
Answer ONLY with the summary text, no headings and no JSON."""

    def __init__(self, feedback_language: str = "Brazilian Portuguese"):
        self.feedback_language = feedback_language

    def build_grading_prompt(self, context: str) -> str:
        """
        Build the user prompt sent along with the exam image.

        Args:
            context: Answer key or free-text grading context from the teacher.

        Returns:
            The formatted user prompt.
        """
        return f"""GRADING TASK

Answer key / context provided by the teacher:
---BEGIN CONTEXT---
{context}
---END CONTEXT---

INSTRUCTIONS:
1. HEADER: identify the student's name, school, teacher, class and exam date when visible.
   Use an empty string for anything that is not visible.
2. TRANSCRIPTION: transcribe all visible text of the exam into "full_transcript".
3. ITEMS: walk through the exam in order.
   - Supporting texts, comic strips or shared statements that introduce one or more questions
     (e.g. "Read the text to answer questions 1 to 3") become an item with "type": "context".
     Put the whole supporting text in "text" and an identifier such as "Text 1" in "label".
   - Every question that requires an answer becomes an item with "type": "question",
     its number in "label" (e.g. "1", "13 a") and its own statement in "text".
4. OCR FIDELITY (CRITICAL): keep every mathematical, chemical and physical symbol as it appears.
   Never simplify formulas: write H₂O with a Unicode subscript, never H2O; write x² with a
   Unicode superscript. Use Unicode for fractions, integrals and arrows.
5. CORRECTION (questions only):
   - Transcribe the student's answer in "student_answer" with the same fidelity.
   - Compare with the answer key and set "score", "max_score", "is_correct" and "feedback".
   - Write the feedback in {self.feedback_language}, addressing the student directly ("you").
   - If the answer is WRONG, the feedback MUST end by stating the correct answer.
6. Write a short "summary" of the student's overall performance in {self.feedback_language}.

OUTPUT FORMAT (respond with ONLY this JSON, no other text):
{{
  "student_name": "<name or empty>",
  "institution": "<school or empty>",
  "teacher_name": "<teacher or empty>",
  "class_name": "<class or empty>",
  "exam_date": "<date as written or empty>",
  "summary": "<overall performance summary>",
  "full_transcript": "<all visible text>",
  "items": [
    {{
      "type": "context",
      "label": "<identifier>",
      "text": "<supporting text>"
    }},
    {{
      "type": "question",
      "label": "<question number>",
      "text": "<question statement>",
      "choices": ["<alternative>", "..."],
      "student_answer": "<transcribed answer>",
      "is_correct": <true|false>,
      "score": <number>,
      "max_score": <number>,
      "feedback": "<feedback for the student>"
    }}
  ]
}}"""

    def build_reevaluation_prompt(self, item: QuestionItem, context: str) -> str:
        """
        Build the prompt for re-judging one question with its edited data.

        Args:
            item: The question as currently edited by the teacher.
            context: The grading context of the session.

        Returns:
            The formatted user prompt.
        """
        return f"""RE-EVALUATION TASK

Re-evaluate one specific question using its CURRENT data, which may have been edited by the teacher.

Original answer key / context of the exam:
---BEGIN CONTEXT---
{context}
---END CONTEXT---

QUESTION DATA:
- Statement: {json.dumps(item.text, ensure_ascii=False)}
- Alternatives: {json.dumps(item.choices, ensure_ascii=False)}
- Student answer (transcribed): {json.dumps(item.student_answer, ensure_ascii=False)}
- Maximum score of the question: {item.verdict.max_score}

INSTRUCTIONS:
1. Decide whether the student answer is correct given the statement, alternatives and context.
2. Give a score between 0 and the maximum score. Partially correct answers get proportional
   credit; "is_correct" may be false for a partially correct answer or true if it is acceptable.
3. Justify the score in the feedback, written in {self.feedback_language} and addressed to the
   student directly ("you").
4. If the answer is WRONG, the feedback MUST end by stating the correct answer.

OUTPUT FORMAT (respond with ONLY this JSON, no other text):
{{
  "is_correct": <true|false>,
  "score": <number>,
  "feedback": "<feedback for the student>"
}}"""

    def build_summary_prompt(self, result: SessionResult) -> str:
        """
        Build the prompt for rewriting the summary from the current state.

        Context rows are left out; only the scored questions are sent.
        """
        questions = [
            {
                "number": q.label,
                "text": q.text,
                "is_correct": q.verdict.is_correct,
                "score": q.verdict.score,
                "max_score": q.verdict.max_score,
                "feedback": q.feedback,
            }
            for q in result.questions()
        ]

        return f"""SUMMARY TASK

Rewrite the analysis summary of this exam from the data below. Some scores, answers or
verdicts may have changed; the summary must reflect the CURRENT state.

STUDENT:
- Name: {result.student_name or "unidentified"}
- Final score: {result.total_score} of {result.max_total_score}

QUESTIONS:
{json.dumps(questions, ensure_ascii=False)}

INSTRUCTIONS:
1. Write running text (one paragraph or two short ones) in {self.feedback_language}.
2. Analyse the performance considering the right and wrong answers.
3. Be encouraging but objective.
4. Congratulate a high score; recommend attention for a low one."""
