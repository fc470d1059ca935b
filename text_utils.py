"""
Text cleanup helpers for report export.
"""
from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from xml.sax.saxutils import escape

_HTML_TAG_RE = re.compile(r'<[^>]+>')
_MD_HEADER_RE = re.compile(r'^\s*#{1,6}\s*(.+?)$', re.MULTILINE)
_MD_BOLD_ASTERISK_RE = re.compile(r'\*\*(.+?)\*\*')
_MD_BOLD_UNDERSCORE_RE = re.compile(r'__(.+?)__')
_MD_ITALIC_ASTERISK_RE = re.compile(r'\*([^*\n]+?)\*')
_MD_BULLET_RE = re.compile(r'^\s*[-*•]\s+', re.MULTILINE)
_MD_TABLE_RULE_RE = re.compile(r'^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?\s*$', re.MULTILINE)
_MD_RULE_RE = re.compile(r'^\s*[-—–*]{3,}\s*$', re.MULTILINE)
_MD_BLOCKQUOTE_RE = re.compile(r'^\s*>\s?', re.MULTILINE)
_MD_CODE_FENCE_RE = re.compile(r'^```.*$', re.MULTILINE)
_MD_INLINE_CODE_RE = re.compile(r'`([^`]+)`')
_EXTRA_NEWLINES_RE = re.compile(r'\n{3,}')

HEADER_MARKER = "##HEADER##"

# Symbols the CID fonts render as boxes
_BULLET_SYMBOLS = "▲▼►◄△▽▷◁▸▹◂◃◆◇★☆●○■□"


def clean_text_for_pdf(text: str) -> str:
    """
    Convert an LLM markdown reply to plain text for the PDF report.
    Headers become paragraphs prefixed with HEADER_MARKER; emphasis, code
    fences, rules and emoji are removed.
    """
    if not text:
        return ""

    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = _HTML_TAG_RE.sub('', text)

    kept = []
    for ch in text:
        if ch in _BULLET_SYMBOLS:
            kept.append('·')
            continue
        if unicodedata.category(ch) in ("So", "Sk", "Cs") or ch in ("\ufe0f", "\u200d", "\ufeff", "\u200b"):
            continue
        kept.append(ch)
    text = "".join(kept).replace("\u3000", " ")

    text = _MD_CODE_FENCE_RE.sub('', text)
    text = _MD_TABLE_RULE_RE.sub('', text)
    text = _MD_RULE_RE.sub('', text)
    text = _MD_BLOCKQUOTE_RE.sub('', text)
    text = _MD_INLINE_CODE_RE.sub(r'\1', text)
    text = _MD_HEADER_RE.sub(rf'\n\n{HEADER_MARKER}\1\n\n', text)
    text = _MD_BOLD_ASTERISK_RE.sub(r'\1', text)
    text = _MD_BOLD_UNDERSCORE_RE.sub(r'\1', text)
    text = _MD_ITALIC_ASTERISK_RE.sub(r'\1', text)
    text = _MD_BULLET_RE.sub('· ', text)

    lines = [re.sub(r'[ \t]+', ' ', line).strip() for line in text.split('\n')]
    text = '\n'.join(lines)
    text = _EXTRA_NEWLINES_RE.sub('\n\n', text)
    return text.strip()


def split_paragraphs(text: str) -> list:
    """Split cleaned text into (is_header, xml-escaped text) paragraphs."""
    result = []
    for para in text.split('\n\n'):
        para = para.strip()
        if not para:
            continue
        is_header = para.startswith(HEADER_MARKER)
        if is_header:
            para = para[len(HEADER_MARKER):].strip()
        result.append((is_header, escape(para).replace('\n', '<br/>')))
    return result


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")
