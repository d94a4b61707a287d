"""
Content Assist
==============

Generates newsletter body HTML from a short prompt using the Gemini REST
API. Without an API key a placeholder body is returned so the composer
keeps working offline.
"""

import html
import logging

import requests

from tagmail.core.config import get_config_value
from tagmail.core.exceptions import TagmailError

logger = logging.getLogger(__name__)

GEMINI_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'

PROMPT_TEMPLATE = (
    'Generate a compelling HTML newsletter body based on the following prompt. '
    'The output should be only the HTML content, ready to be embedded. '
    'Do not include <html>, <head>, or <body> tags. '
    'Use standard HTML tags like <h1>, <h2>, <p>, <ul>, <li>, <a>, and <strong>. '
    'Prompt: "{prompt}"'
)


class ContentAssistError(TagmailError):
    """The content generator could not produce a body"""


def _mock_content(prompt):
    return (
        '<h2>Mock AI-Generated Content</h2>'
        '<p>This is placeholder content because the API key is not configured. '
        'With a valid key, Gemini would generate content based on your prompt: '
        f'<em>"{html.escape(prompt)}"</em></p>'
        "<p>Here's a sample list:</p>"
        '<ul><li>Feature 1</li><li>Feature 2</li><li>Special Offer</li></ul>'
    )


def _strip_code_fences(text):
    return text.replace('```html', '').replace('```', '').strip()


def generate_content(prompt, timeout=30):
    """
    Generate newsletter HTML for prompt.

    Raises:
        ContentAssistError: empty prompt, transport failure or unusable response
    """
    prompt = (prompt or '').strip()
    if not prompt:
        raise ContentAssistError('Please enter a prompt.')

    api_key = get_config_value('GEMINI_API_KEY')
    if not api_key:
        logger.warning("GEMINI_API_KEY not set, returning placeholder content")
        return _mock_content(prompt)

    model = get_config_value('GEMINI_MODEL', 'gemini-2.5-flash')
    try:
        response = requests.post(
            GEMINI_URL.format(model=model),
            params={'key': api_key},
            json={'contents': [{'parts': [{'text': PROMPT_TEMPLATE.format(prompt=prompt)}]}]},
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Error generating content with Gemini: {e}")
        raise ContentAssistError('Failed to generate content. Please check your API key and connection.')

    try:
        parts = data['candidates'][0]['content']['parts']
    except (KeyError, IndexError, TypeError):
        logger.error(f"Unexpected Gemini response: {str(data)[:300]}")
        return ''

    text = ''.join(part.get('text', '') for part in parts)
    return _strip_code_fences(text)
