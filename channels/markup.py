"""
Telegram HTML helpers.

Bot-authored notices are written with a small Markdown-like syntax and
converted here to the HTML subset Telegram accepts with ``parse_mode=HTML``:

    ```lang\\ncode```   → <pre><code class="language-lang">code</code></pre>
    `code`            → <code>code</code>
    [text](url)       → <a href="url">text</a>
    **bold** __bold__ → <b>bold</b>
    *italic*          → <i>italic</i>
    ~strike~          → <s>strike</s>
    ||spoiler||       → <tg-spoiler>spoiler</tg-spoiler>
    > quote           → <blockquote>quote</blockquote>
    >> quote          → <blockquote expandable>quote</blockquote>

User-authored text is never run through the converter, only escaped.
"""
from __future__ import annotations

import re

from models.schemas import User

SEPARATOR = "————————————"

_CODE_BLOCK = re.compile(r"```(\w*)\n(.+?)```", re.DOTALL)
_INLINE_CODE = re.compile(r"`([^`\n]+?)`")
_LINK = re.compile(r"\[([^\]]+?)\]\(([^)\s]+?)\)")
_BOLD = re.compile(r"\*\*(.+?)\*\*|__(.+?)__")
_ITALIC = re.compile(r"\*([^*\n]+?)\*")
_STRIKE = re.compile(r"~([^~\n]+?)~")
_SPOILER = re.compile(r"\|\|(.+?)\|\|")
_PLACEHOLDER = re.compile(r"\x00(\d+)\x00")


def escape_html(text: str) -> str:
    """Escape the three characters Telegram's HTML parser reserves."""
    if not text:
        return ""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_text_html(text: str) -> str:
    """Convert Markdown-style notice text to Telegram HTML."""
    if not text:
        return ""

    # code is lifted out first so its contents are not formatted
    protected: list[str] = []

    def _protect(html: str) -> str:
        protected.append(html)
        return f"\x00{len(protected) - 1}\x00"

    def _code_block(match: re.Match) -> str:
        lang, code = match.group(1), match.group(2).strip()
        css = f' class="language-{lang}"' if lang else ""
        return _protect(f"<pre><code{css}>{escape_html(code)}</code></pre>")

    text = _CODE_BLOCK.sub(_code_block, text)
    text = _INLINE_CODE.sub(lambda m: _protect(f"<code>{escape_html(m.group(1))}</code>"), text)

    html = _blockquotes(escape_html(text))
    html = _LINK.sub(r'<a href="\2">\1</a>', html)
    html = _BOLD.sub(lambda m: f"<b>{m.group(1) or m.group(2)}</b>", html)
    html = _ITALIC.sub(r"<i>\1</i>", html)
    html = _STRIKE.sub(r"<s>\1</s>", html)
    html = _SPOILER.sub(r"<tg-spoiler>\1</tg-spoiler>", html)
    html = _PLACEHOLDER.sub(lambda m: protected[int(m.group(1))], html)
    return html.strip()


def _blockquotes(escaped: str) -> str:
    """Group consecutive ``&gt; `` / ``&gt;&gt; `` lines into blockquotes."""
    out: list[str] = []
    quote: list[str] = []
    quote_tag = ""

    def _flush():
        nonlocal quote_tag
        if quote:
            out.append(f"<{quote_tag}>" + "\n".join(quote) + "</blockquote>")
            quote.clear()
        quote_tag = ""

    for line in escaped.split("\n"):
        if line.startswith("&gt;&gt; "):
            tag, body = "blockquote expandable", line[len("&gt;&gt; "):]
        elif line.startswith("&gt; "):
            tag, body = "blockquote", line[len("&gt; "):]
        else:
            _flush()
            out.append(line)
            continue
        if tag != quote_tag:
            _flush()
            quote_tag = tag
        quote.append(body)
    _flush()
    return "\n".join(out)


def build_sender_info(user: User) -> str:
    """HTML header identifying who sent a relayed message."""
    name = escape_html(user.full_name)
    if user.username:
        label = name or f"@{escape_html(user.username)}"
        header = (
            f'From: <a href="https://t.me/{user.username}">{label}</a> '
            f"(ID: <code>{user.id}</code>)"
        )
    else:
        link = f"tg://user?id={user.id}"
        header = (
            f"From: {name or 'Unknown user'} (ID: <code>{user.id}</code>)\n"
            f'<a href="{link}">{link}</a>'
        )
    return f"{header}\n{SEPARATOR}"


def with_sender_info(user: User, body: str) -> str:
    """Sender header followed by the (escaped) original text or caption."""
    return f"{build_sender_info(user)}\n{escape_html(body)}"
