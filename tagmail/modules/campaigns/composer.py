"""
Campaign Composer Helpers
=========================

Pure helpers behind the compose screen: the starter template library,
subject suggestions taken from other drafts, and content warnings.
"""

import re

from .models import STATUS_DRAFT

SCRIPT_TAG = re.compile(r'<script', re.IGNORECASE)

_TEXT = "font-family: Arial, sans-serif; color: #555; line-height: 1.6;"

TEMPLATES = [
    {
        'id': 'template-1',
        'name': 'Simple Announcement',
        'description': 'A clean, single-column template for quick updates and announcements.',
        'html': f'''
<h1 style="color: #333; font-family: Arial, sans-serif;">Main Announcement Title</h1>
<p style="{_TEXT}">
  This is a paragraph for your main content. Share news or provide updates here.
</p>
<a href="#" style="background-color: #007bff; color: white; padding: 10px 15px; text-decoration: none; border-radius: 5px; font-family: Arial, sans-serif; display: inline-block; margin-top: 10px;">
  Call to Action
</a>
''',
    },
    {
        'id': 'template-2',
        'name': 'Two-Column Feature',
        'description': 'A versatile template to showcase two different features or articles side-by-side.',
        'html': f'''
<h1 style="color: #333; font-family: Arial, sans-serif; text-align: center;">Weekly Feature</h1>
<table width="100%" border="0" cellpadding="10" cellspacing="0">
  <tr>
    <td valign="top" width="50%" style="{_TEXT}">
      <h2 style="color: #333; margin-top: 0;">Feature One</h2>
      <p>Describe the first feature here.</p>
      <a href="#">Read More</a>
    </td>
    <td valign="top" width="50%" style="{_TEXT}">
      <h2 style="color: #333; margin-top: 0;">Feature Two</h2>
      <p>Describe the second feature here.</p>
      <a href="#">Read More</a>
    </td>
  </tr>
</table>
''',
    },
    {
        'id': 'template-3',
        'name': 'Hero Image & Content',
        'description': 'A visually engaging template with a prominent hero image to capture attention.',
        'html': f'''
<div style="text-align: center;">
  <img src="https://via.placeholder.com/600x300" alt="Hero Image" style="max-width: 100%; height: auto; border-radius: 8px;" />
</div>
<h1 style="color: #333; font-family: Arial, sans-serif; margin-top: 20px;">Captivating Headline</h1>
<p style="{_TEXT}">
  Use the image to showcase a new product, an event or your brand. Details follow below.
</p>
''',
    },
    {
        'id': 'template-4',
        'name': 'Product Showcase',
        'description': 'Highlight a specific product with an image, description, and a clear call-to-action button.',
        'html': f'''
<table width="100%" border="0" cellpadding="0" cellspacing="0" style="background-color: #f9f9f9; padding: 20px; border-radius: 8px;">
  <tr>
    <td width="40%" valign="top">
      <img src="https://via.placeholder.com/250x250" alt="Product Image" style="max-width: 100%; height: auto; border-radius: 8px;">
    </td>
    <td width="60%" valign="top" style="padding-left: 20px; {_TEXT}">
      <h2 style="color: #333; margin-top: 0;">Product Name</h2>
      <p>A persuasive description of your product goes here.</p>
      <p style="font-size: 24px; color: #007bff; font-weight: bold; margin: 15px 0;">$99.99</p>
      <a href="#" style="background-color: #ffc107; color: #333; padding: 12px 25px; text-decoration: none; border-radius: 5px; font-weight: bold; display: inline-block;">Buy Now</a>
    </td>
  </tr>
</table>
''',
    },
]


def get_templates():
    """Template metadata plus HTML, stripped of surrounding whitespace"""
    return [dict(t, html=t['html'].strip()) for t in TEMPLATES]


def get_template(template_id):
    for template in get_templates():
        if template['id'] == template_id:
            return template
    return None


def subject_suggestions(campaigns, typed, exclude_id=None):
    """
    Subjects of other Draft campaigns containing the typed text
    (case-insensitive), excluding an exact match of what was typed.
    """
    typed = (typed or '').strip().lower()
    suggestions = []
    for campaign in campaigns:
        if campaign.get('status') != STATUS_DRAFT or campaign.get('id') == exclude_id:
            continue
        subject = campaign.get('subject') or ''
        if not subject or subject.lower() == typed:
            continue
        if typed in subject.lower() and subject not in suggestions:
            suggestions.append(subject)
    return suggestions


def content_warnings(subject, body):
    """Non-blocking composer warnings as {field: message}"""
    warnings = {}
    if not (subject or '').strip():
        warnings['subject'] = 'Subject is required.'
    if SCRIPT_TAG.search(body or ''):
        warnings['body'] = 'Warning: Content contains <script> tags, which may be removed or cause issues.'
    return warnings
