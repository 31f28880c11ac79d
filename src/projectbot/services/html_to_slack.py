from __future__ import annotations

"""Convert HTML summaries into Slack mrkdwn."""

import re


_HAS_TAG = re.compile(r"<[a-z][\s\S]*>", re.I)

_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)

_RULES = (
    (re.compile(r"<html>[\s\S]*?<body>", re.I), ""),
    (re.compile(r"</body>[\s\S]*?</html>", re.I), ""),
    (re.compile(r"<head>[\s\S]*?</head>", re.I), ""),
    (re.compile(r"<style>[\s\S]*?</style>", re.I), ""),
    (re.compile(r"<h[1-6][^>]*>(.*?)</h[1-6]>", re.I | re.S), r"*\1*\n"),
    (re.compile(r"<p(?:\s[^>]*)?>(.*?)</p>", re.I | re.S), r"\1\n\n"),
    (re.compile(r"<li(?:\s[^>]*)?>(.*?)</li>", re.I | re.S), "\u2022 \\1\n"),
    (re.compile(r"</?[uo]l(?:\s[^>]*)?>", re.I), "\n"),
    (re.compile(r"<br\s*/?>", re.I), "\n"),
    (re.compile(r"<a\s[^>]*href=[\"']([^\"']+)[\"'][^>]*>(.*?)</a>", re.I | re.S), "\x02\\1|\\2\x03"),
    (re.compile(r"<(?:strong|b)(?:\s[^>]*)?>(.*?)</(?:strong|b)>", re.I | re.S), r"*\1*"),
    (re.compile(r"<(?:em|i)(?:\s[^>]*)?>(.*?)</(?:em|i)>", re.I | re.S), r"_\1_"),
    (re.compile(r"<[^>]*>"), ""),
)


def decode_entities(text: str) -> str:
    # &amp; last so "&amp;lt;" stays literal "&lt;"
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def html_to_slack(html: str) -> str:
    if not html:
        return ""
    if not _HAS_TAG.search(html):
        return decode_entities(html)
    text = html
    for pattern, repl in _RULES:
        text = pattern.sub(repl, text)
    text = text.replace("\x02", "<").replace("\x03", ">")
    text = decode_entities(text)
    text = re.sub(r"\n\s*\n\s*\n+", "\n\n", text).strip()
    text = re.sub("^\u2022\\s*", "\u2022 ", text, flags=re.M)
    return re.sub("([^\\n])\u2022\\s*", "\\1\n\u2022 ", text)
