"""GitMsg trailer parsing and formatting.

Authored posts end with a header line::

    --- GitMsg: ext="social"; type="comment"; original="#commit:abc..."; v="0.1.0"; ext-v="0.1.0" ---

and may carry any number of embedded reference sections, each a header line
followed by the quoted content of the referenced post::

    --- GitMsg-Ref: ext="social"; author="Ada"; email="ada@example.com"; time="2025-01-02T10:00:00Z"; ref="https://host/r#commit:abc..."; v="0.1.0"; ext-v="0.1.0" ---
    > original text
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

PROTOCOL_VERSION = "0.1.0"
SOCIAL_EXT = "social"
SOCIAL_EXT_VERSION = "0.1.0"

POST_TYPES = ("post", "comment", "repost", "quote")

_HEADER_LINE = re.compile(r"^--- GitMsg: (.*) ---$")
_REF_LINE = re.compile(r"^--- GitMsg-Ref: (.*) ---$")
_FIELD = re.compile(r'([a-zA-Z_][a-zA-Z0-9_:-]*)="([^"]*)"')


@dataclass
class GitMsgHeader:
    ext: str
    v: str
    ext_v: str
    fields: Dict[str, str] = field(default_factory=dict)

    def is_type(self, ext: str, type_: str) -> bool:
        return self.ext == ext and self.fields.get("type") == type_


@dataclass
class GitMsgRef:
    ext: str
    ref: str
    v: str
    ext_v: str
    author: str
    email: str
    time: str
    fields: Dict[str, str] = field(default_factory=dict)
    metadata: Optional[str] = None

    def quoted_content(self) -> str:
        """Text of the ``>``-prefixed lines of the metadata block."""
        if not self.metadata:
            return ""
        lines = [
            line[1:].strip()
            for line in self.metadata.split("\n")
            if line.startswith(">")
        ]
        return "\n".join(lines)


@dataclass
class GitMsgMessage:
    content: str
    header: GitMsgHeader
    references: List[GitMsgRef] = field(default_factory=list)


def _parse_fields(text: str) -> List[Tuple[str, str]]:
    return _FIELD.findall(text)


def parse_header(line: str) -> Optional[GitMsgHeader]:
    match = _HEADER_LINE.match(line.strip())
    if not match:
        return None
    core = {"ext": "", "v": "", "ext-v": ""}
    fields: Dict[str, str] = {}
    for key, value in _parse_fields(match.group(1)):
        if key in core:
            core[key] = value
        else:
            fields[key] = value
    if not core["ext"] or not core["v"] or not core["ext-v"]:
        return None
    return GitMsgHeader(ext=core["ext"], v=core["v"], ext_v=core["ext-v"], fields=fields)


def parse_ref(section: str) -> Optional[GitMsgRef]:
    """Parse one ``GitMsg-Ref`` section (header line plus metadata lines)."""
    lines = section.split("\n")
    if not lines:
        return None
    match = _REF_LINE.match(lines[0].strip())
    if not match:
        return None
    core = {k: "" for k in ("ext", "ref", "v", "ext-v", "author", "email", "time")}
    fields: Dict[str, str] = {}
    for key, value in _parse_fields(match.group(1)):
        if key in core:
            core[key] = value
        else:
            fields[key] = value
    if not all(core.values()):
        return None
    metadata = "\n".join(lines[1:]).strip() or None
    return GitMsgRef(
        ext=core["ext"],
        ref=core["ref"],
        v=core["v"],
        ext_v=core["ext-v"],
        author=core["author"],
        email=core["email"],
        time=core["time"],
        fields=fields,
        metadata=metadata,
    )


def parse_message(message: str) -> Optional[GitMsgMessage]:
    """Split a commit message into content, header and references.

    Returns ``None`` when the message carries no valid ``GitMsg`` header.
    """
    if not message:
        return None
    lines = message.split("\n")
    header_index = next(
        (i for i, line in enumerate(lines) if _HEADER_LINE.match(line.strip())),
        None,
    )
    if header_index is None:
        return None
    header = parse_header(lines[header_index])
    if header is None:
        return None

    content = "\n".join(lines[:header_index]).strip()
    references: List[GitMsgRef] = []
    section: List[str] = []
    for line in lines[header_index + 1:]:
        if _REF_LINE.match(line.strip()):
            if section:
                ref = parse_ref("\n".join(section))
                if ref:
                    references.append(ref)
            section = [line.strip()]
        elif section:
            section.append(line)
    if section:
        ref = parse_ref("\n".join(section))
        if ref:
            references.append(ref)

    return GitMsgMessage(content=content, header=header, references=references)


def extract_clean_content(message: str) -> str:
    """Message text with every GitMsg header and reference section removed."""
    parsed = parse_message(message)
    if parsed is None:
        return (message or "").strip()
    return parsed.content


def get_post_type(gitmsg: Optional[GitMsgMessage]) -> str:
    if gitmsg is None or gitmsg.header.ext != SOCIAL_EXT:
        return "post"
    value = gitmsg.header.fields.get("type", "post")
    return value if value in POST_TYPES else "post"


def is_empty_repost(gitmsg: GitMsgMessage) -> bool:
    """A repost whose only content is the one-line ``# ...`` attribution."""
    if not gitmsg.header.is_type(SOCIAL_EXT, "repost"):
        return False
    content = gitmsg.content.strip()
    return content.startswith("#") and len(content.split("\n")) == 1


def _format_fields(pairs: List[Tuple[str, str]]) -> str:
    return "; ".join(f'{key}="{value}"' for key, value in pairs)


def format_header(header: GitMsgHeader) -> str:
    pairs = [("ext", header.ext), *header.fields.items(), ("v", header.v), ("ext-v", header.ext_v)]
    return f"--- GitMsg: {_format_fields(pairs)} ---"


def format_ref(ref: GitMsgRef) -> str:
    pairs = [
        ("ext", ref.ext),
        ("author", ref.author),
        ("email", ref.email),
        ("time", ref.time),
        *ref.fields.items(),
        ("ref", ref.ref),
        ("v", ref.v),
        ("ext-v", ref.ext_v),
    ]
    line = f"--- GitMsg-Ref: {_format_fields(pairs)} ---"
    if ref.metadata:
        return f"{line}\n{ref.metadata}"
    return line


def quote(content: str) -> str:
    return "\n".join(f"> {line}" for line in content.split("\n"))


def format_message(
    content: str,
    header: GitMsgHeader,
    references: Optional[List[GitMsgRef]] = None,
) -> str:
    parts = [content.strip(), "", format_header(header)]
    for ref in references or []:
        parts.extend(["", format_ref(ref)])
    return "\n".join(parts)


def social_header(
    type_: str,
    *,
    original: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> GitMsgHeader:
    fields: Dict[str, str] = {"type": type_}
    if reply_to:
        fields["reply-to"] = reply_to
    if original:
        fields["original"] = original
    return GitMsgHeader(ext=SOCIAL_EXT, v=PROTOCOL_VERSION, ext_v=SOCIAL_EXT_VERSION, fields=fields)
