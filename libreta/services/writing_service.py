"""
Writing Improvement Service
===========================
Rewrites a teacher's draft text (appreciations, descriptive conclusions)
with an OpenAI chat model. Advisory only: returns a suggestion the user
must explicitly accept; never touches grading state.
"""
import os
import logging

from libreta.config import config as app_config

logger = logging.getLogger(__name__)

IMPROVE_PROMPT = (
    "Mejora la redacción del siguiente comentario pedagógico escrito por un docente. "
    "Mantén el sentido, el tono respetuoso y el idioma español. "
    "Devuelve solo el texto mejorado, sin comillas ni explicaciones.\n\nTexto:\n{text}"
)


def _get_client():
    from openai import OpenAI

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key or api_key.strip() == "":
        raise RuntimeError("OPENAI_API_KEY not configured")
    return OpenAI(api_key=api_key)


def improve_text(raw_text):
    """Return an improved version of raw_text, or None when unavailable."""
    if not (raw_text or '').strip():
        return None
    try:
        client = _get_client()
        response = client.chat.completions.create(
            model=app_config.improve_model,
            messages=[{"role": "user", "content": IMPROVE_PROMPT.format(text=raw_text)}],
            temperature=0.3,
        )
        improved = (response.choices[0].message.content or '').strip()
        return improved or None
    except Exception as e:
        logger.error("Error improving writing: %s", e)
        return None
