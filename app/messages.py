"""User-facing job stage and failure messages, per exam language."""

from typing import Dict

DEFAULT_LANGUAGE = "en"

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "stage.pending": "Queued...",
        "stage.searching": "Searching for relevant content...",
        "stage.generating": "Generating questions...",
        "stage.completing": "Finalizing exam...",
        "stage.completed": "Completed successfully!",
        "stage.failed": "Generation failed",
        "error.no_content": "No content found for selected topics",
        "error.search": "Failed to search content: {detail}",
        "error.generation": "Failed to generate questions: {detail}",
        "error.persistence": "Failed to save the exam: {detail}",
        "error.interrupted": "Generation was interrupted. Please try again.",
        "error.unexpected": "Failed to generate exam. Please try again.",
        "exam.title_general": "General",
        "exam.description": "Exam with {count} questions",
    },
    "ar": {
        "stage.pending": "في قائمة الانتظار...",
        "stage.searching": "البحث عن المحتوى المناسب...",
        "stage.generating": "إنشاء الأسئلة...",
        "stage.completing": "إنهاء الامتحان...",
        "stage.completed": "تم بنجاح!",
        "stage.failed": "فشل إنشاء الامتحان",
        "error.no_content": "لم يتم العثور على محتوى للموضوعات المحددة",
        "error.search": "فشل البحث عن المحتوى: {detail}",
        "error.generation": "فشل إنشاء الأسئلة: {detail}",
        "error.persistence": "فشل حفظ الامتحان: {detail}",
        "error.interrupted": "تمت مقاطعة عملية الإنشاء. يرجى المحاولة مرة أخرى.",
        "error.unexpected": "فشل إنشاء الامتحان. يرجى المحاولة مرة أخرى.",
        "exam.title_general": "عام",
        "exam.description": "امتحان من {count} سؤال",
    },
}


def get_message(key: str, language: str, **params) -> str:
    """
    Look up a message in the given language, falling back to English.

    Args:
        key: Message key, e.g. ``stage.searching``
        language: Language code of the job or exam
        **params: Values substituted into the message template

    Returns:
        Formatted message
    """
    table = MESSAGES.get(language, MESSAGES[DEFAULT_LANGUAGE])
    template = table.get(key) or MESSAGES[DEFAULT_LANGUAGE][key]
    return template.format(**params) if params else template
