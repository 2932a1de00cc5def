"""
HTML body conversion for exported notes.

Notes bodies are the app's HTML; these helpers turn them into plain text or
Markdown for the .txt and .md writers.
"""
import html
import re

BLANK_LINES = re.compile(r'\n{3,}')
TAG = re.compile(r'<[^>]+>')

# (pattern, replacement) applied in order; all case-insensitive, dot matches newline
MARKDOWN_RULES = [
    (r'<h1\b[^>]*>(.*?)</h1>', r'\n# \1\n'),
    (r'<h2\b[^>]*>(.*?)</h2>', r'\n## \1\n'),
    (r'<h3\b[^>]*>(.*?)</h3>', r'\n### \1\n'),
    (r'<h4\b[^>]*>(.*?)</h4>', r'\n#### \1\n'),
    (r'<h5\b[^>]*>(.*?)</h5>', r'\n##### \1\n'),
    (r'<h6\b[^>]*>(.*?)</h6>', r'\n###### \1\n'),
    (r'<(b|strong)\b[^>]*>(.*?)</\1>', r'**\2**'),
    (r'<(i|em)\b[^>]*>(.*?)</\1>', r'*\2*'),
    (r'<u\b[^>]*>(.*?)</u>', r'_\1_'),
    (r'<(s|strike|del)\b[^>]*>(.*?)</\1>', r'~~\2~~'),
    (r'<a\b[^>]*href="([^"]*)"[^>]*>(.*?)</a>', r'[\2](\1)'),
    (r'<img\b[^>]*src="([^"]*)"[^>]*alt="([^"]*)"[^>]*/?>', r'![\2](\1)'),
    (r'<img\b[^>]*src="([^"]*)"[^>]*/?>', r'![](\1)'),
    (r'<li\b[^>]*>(.*?)</li>', r'- \1\n'),
    (r'</?[ou]l\b[^>]*>', '\n'),
    (r'<blockquote\b[^>]*>(.*?)</blockquote>', r'\n> \1\n'),
    (r'<pre\b[^>]*><code\b[^>]*>(.*?)</code></pre>', r'\n```\n\1\n```\n'),
    (r'<code\b[^>]*>(.*?)</code>', r'`\1`'),
    (r'<hr\b[^>]*/?>', '\n---\n'),
    (r'<br\s*/?>', '  \n'),
    (r'</p>', '\n\n'),
    (r'</div>', '\n'),
    (r'</tr>', '\n'),
]


def html_to_plain_text(body: str) -> str:
    """Strip tags, keeping line structure from <br>, block and row ends."""
    text = re.sub(r'<br\s*/?>', '\n', body, flags=re.IGNORECASE)
    text = re.sub(r'</(p|div|li|tr)>', '\n', text, flags=re.IGNORECASE)
    text = TAG.sub('', text)
    text = html.unescape(text)
    text = BLANK_LINES.sub('\n\n', text)
    return text.strip()


def html_to_markdown(body: str) -> str:
    md = body
    for pattern, replacement in MARKDOWN_RULES:
        md = re.sub(pattern, replacement, md, flags=re.IGNORECASE | re.DOTALL)
    md = TAG.sub('', md)
    md = html.unescape(md)
    md = BLANK_LINES.sub('\n\n', md)
    return md.strip()


def plain_text_for(note) -> str:
    """Plain text captured by Notes, or derived from the body when missing."""
    return note.plain_text if note.plain_text else html_to_plain_text(note.html_body)
