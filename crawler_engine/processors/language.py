"""
Language detection for choosing the extraction output language.
"""

from langdetect import DetectorFactory, LangDetectException, detect

from crawler_engine.core.logging import get_logger


# langdetect is probabilistic unless seeded
DetectorFactory.seed = 0

MIN_DETECTION_LENGTH = 50

logger = get_logger(__name__)


def detect_language(text: str, default: str = 'en') -> str:
    """
    Detect language of content

    Args:
        text: Plain text or Markdown to analyze
        default: Code returned for short or undetectable text

    Returns:
        ISO 639-1 language code
    """
    sample = (text or '')[:5000]
    if len(sample.strip()) < MIN_DETECTION_LENGTH:
        return default
    try:
        return detect(sample)
    except LangDetectException as e:
        logger.debug(f"Language detection failed: {e}")
        return default
