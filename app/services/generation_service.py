"""Generation service for synthesizing exam questions with a generative model."""

import logging
from typing import List, Optional

from pydantic import ValidationError

from app.config import settings
from app.exceptions import GenerationException, UpstreamCallException, ValidationException
from app.models.generation_models import SynthesisPayload, SynthesizedQuestion
from app.models.retrieval_models import ContentChunk
from app.services.llm_client import LLMClient
from app.utils.json_extraction import extract_json_object

logger = logging.getLogger(__name__)

_DIFFICULTY_AR = {"easy": "سهل", "medium": "متوسط", "hard": "صعب"}

_PROMPT_EN = """You are an educational assistant specialized in creating exam questions.

Subject: {subject}
Topics: {topics}
Difficulty: {difficulty}

Reference Content:
{content}

Create exactly {count} {difficulty} questions about this content.

Question Requirements:
1. Clear and direct questions
2. Variety of question types (multiple_choice, short_answer, true_false)
3. For multiple_choice: exactly 4 options, and correctAnswer must be the exact text of one option
4. For true_false: correctAnswer must be "true" or "false"
5. Balanced coverage of topics
6. Brief explanation of the correct answer

Return the questions in this JSON format:
{{
  "questions": [
    {{
      "questionNumber": 1,
      "questionType": "multiple_choice",
      "questionText": "Question text",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "correctAnswer": "Option A",
      "explanation": "Answer explanation",
      "difficulty": "{difficulty}"
    }}
  ]
}}

Return exactly {count} items. Make the questions varied and useful for studying."""

_PROMPT_AR = """أنت مساعد تعليمي متخصص في إنشاء أسئلة امتحانات باللغة العربية.

المادة: {subject}
المواضيع: {topics}
مستوى الصعوبة: {difficulty_label}

المحتوى المرجعي:
{content}

قم بإنشاء {count} سؤال بالضبط بمستوى {difficulty_label} حول هذا المحتوى.

متطلبات الأسئلة:
1. أسئلة واضحة ومباشرة باللغة العربية الفصحى
2. تنوع في أنواع الأسئلة (multiple_choice، short_answer، true_false)
3. لأسئلة الاختيار المتعدد: 4 خيارات بالضبط، ويجب أن تطابق correctAnswer نص أحد الخيارات حرفياً
4. لأسئلة صح/خطأ: يجب أن تكون correctAnswer إما "true" أو "false"
5. تغطية متوازنة للمواضيع المختلفة
6. شرح موجز للإجابة الصحيحة

أعد الأسئلة بصيغة JSON التالية (أبقِ أسماء الحقول وقيم questionType و difficulty بالإنجليزية):
{{
  "questions": [
    {{
      "questionNumber": 1,
      "questionType": "multiple_choice",
      "questionText": "نص السؤال",
      "options": ["الخيار أ", "الخيار ب", "الخيار ج", "الخيار د"],
      "correctAnswer": "الخيار أ",
      "explanation": "شرح الإجابة",
      "difficulty": "{difficulty}"
    }}
  ]
}}

أعد {count} عنصراً بالضبط. اجعل الأسئلة متنوعة ومفيدة للدراسة."""


class GenerationService:
    """Service for generating exam questions from reference content."""

    def __init__(
        self,
        llm_client: LLMClient,
        max_context_chars: Optional[int] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize generation service.

        Args:
            llm_client: Generative model client
            max_context_chars: Bound on reference text included in the prompt
            max_tokens: Maximum tokens for the model response
            timeout: Timeout for the model call in seconds
        """
        self.llm_client = llm_client
        self.max_context_chars = max_context_chars or settings.max_context_chars
        self.max_tokens = max_tokens or settings.generation_max_tokens
        self.timeout = timeout or settings.llm_timeout_sec

    def synthesize(
        self,
        chunks: List[ContentChunk],
        subject: str,
        topics: List[str],
        question_count: int,
        difficulty: str,
        language: str,
    ) -> List[SynthesizedQuestion]:
        """
        Generate a validated question set from content chunks.

        Fewer questions than requested is accepted; more is rejected.

        Args:
            chunks: Reference content chunks (at least one)
            subject: Subject name
            topics: Topics covered
            question_count: Number of questions requested
            difficulty: easy, medium or hard
            language: ar or en

        Returns:
            List of validated questions in model order

        Raises:
            GenerationException: If the model call fails or its output is invalid
        """
        prompt = self.build_prompt(
            chunks, subject, topics, question_count, difficulty, language
        )

        try:
            response_text = self.llm_client.complete(
                prompt, max_tokens=self.max_tokens, timeout=self.timeout
            )
        except UpstreamCallException as e:
            logger.error(f"Question generation call failed: {e.message}")
            raise GenerationException(
                f"Question generation failed: {e.message}",
                details={"cause": "upstream", **e.details},
            ) from e

        try:
            questions = self.parse_questions(response_text, question_count)
        except ValidationException as e:
            logger.error(
                f"Invalid question payload from model: {e.message}; "
                f"raw response: {response_text!r}"
            )
            raise GenerationException(
                f"Question generation returned invalid output: {e.message}",
                details={"cause": "validation", **e.details},
            ) from e

        if len(questions) < question_count:
            logger.warning(
                f"Model returned {len(questions)} of {question_count} requested questions"
            )
        return questions

    def build_prompt(
        self,
        chunks: List[ContentChunk],
        subject: str,
        topics: List[str],
        question_count: int,
        difficulty: str,
        language: str,
    ) -> str:
        """
        Build the single structured generation prompt.

        Args:
            chunks: Reference content chunks
            subject: Subject name
            topics: Topics covered
            question_count: Number of questions requested
            difficulty: Difficulty level
            language: ar or en

        Returns:
            Prompt text
        """
        content = self.build_context(chunks)
        if language == "ar":
            return _PROMPT_AR.format(
                subject=subject,
                topics="، ".join(topics) if topics else subject,
                difficulty=difficulty,
                difficulty_label=_DIFFICULTY_AR.get(difficulty, _DIFFICULTY_AR["medium"]),
                content=content,
                count=question_count,
            )
        return _PROMPT_EN.format(
            subject=subject,
            topics=", ".join(topics) if topics else subject,
            difficulty=difficulty,
            content=content,
            count=question_count,
        )

    def build_context(self, chunks: List[ContentChunk]) -> str:
        """
        Concatenate chunk text into a bounded context window.

        Whole chunks are added in order until the bound is reached; the first
        chunk is truncated rather than dropped if it alone exceeds the bound.
        """
        parts: List[str] = []
        used = 0
        for chunk in chunks:
            text = chunk.content.strip()
            if not text:
                continue
            separator = 2 if parts else 0
            if used + separator + len(text) > self.max_context_chars:
                if not parts:
                    parts.append(text[: self.max_context_chars])
                break
            parts.append(text)
            used += separator + len(text)
        return "\n\n".join(parts)

    @staticmethod
    def parse_questions(response_text: str, question_count: int) -> List[SynthesizedQuestion]:
        """
        Extract and validate the question payload from model output.

        Args:
            response_text: Raw model response
            question_count: Number of questions requested

        Returns:
            Validated questions

        Raises:
            ValidationException: If no payload is found, it fails validation,
                or it holds more questions than requested
        """
        payload = extract_json_object(response_text, required_key="questions")
        try:
            parsed = SynthesisPayload.model_validate(payload)
        except ValidationError as e:
            raise ValidationException(
                "Question payload failed validation",
                details={
                    "errors": e.errors(include_url=False, include_context=False),
                    "raw_response": response_text[:4000],
                },
            ) from e

        if len(parsed.questions) > question_count:
            raise ValidationException(
                f"Model returned {len(parsed.questions)} questions, "
                f"more than the {question_count} requested",
                details={"raw_response": response_text[:4000]},
            )
        return parsed.questions
