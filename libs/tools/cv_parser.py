from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

import pdfplumber

from libs.core import logging as core_logging
from libs.core.models import CVRecord, EducationEntry, ExperienceEntry

LOGGER = core_logging.get_logger("cv_parser")

logging.getLogger("pdfminer").setLevel(logging.ERROR)

SUPPORTED_SUFFIXES = (".pdf", ".txt", ".md")

_CID_RE = re.compile(r"\(cid:\d+\)")
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_PHONE_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")
_LINKEDIN_RE = re.compile(r"(?:https?://)?(?:www\.)?linkedin\.com/[^\s|,;]+", re.IGNORECASE)
_GITHUB_RE = re.compile(r"(?:https?://)?(?:www\.)?github\.com/[^\s|,;]+", re.IGNORECASE)
_BULLET_RE = re.compile(r"^(?:[-•*▪◦●‣·]|\d+[.)])\s+")
_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+"
_POINT = rf"(?:{_MONTH})?(?:\d{{1,2}}/)?\d{{4}}"
_DATE_RANGE_RE = re.compile(
    rf"(?P<range>{_POINT}\s*(?:[-–—]|\bto\b)\s*(?:{_POINT}|present|current|now|today))",
    re.IGNORECASE,
)
_RANGE_SEPARATOR_RE = re.compile(r"\s*(?:[-–—]|\bto\b)\s*", re.IGNORECASE)
_HEADER_SPLIT_RE = re.compile(r"\s*\|\s*|\s+[•·]\s+|\s+[–—-]\s+|\s+at\s+|\s+@\s+")
_SKILL_SPLIT_RE = re.compile(r"[,;|•·]|\s{2,}")
_INSTITUTION_RE = re.compile(
    r"\b(university|universit[äé]t?|college|school|institute|academy|polytechnic|[ée]cole)\b",
    re.IGNORECASE,
)

_SECTION_ALIASES: Dict[str, tuple[str, ...]] = {
    "summary": ("summary", "profile", "about", "about me", "professional summary", "objective"),
    "experience": (
        "experience",
        "work experience",
        "professional experience",
        "employment",
        "employment history",
        "work history",
        "career history",
    ),
    "education": ("education", "academic background", "education and training"),
    "skills": (
        "skills",
        "technical skills",
        "core skills",
        "key skills",
        "competencies",
        "technologies",
    ),
    "other": (
        "projects",
        "certifications",
        "certificates",
        "languages",
        "interests",
        "hobbies",
        "publications",
        "awards",
        "references",
        "volunteering",
    ),
}
_HEADINGS = {alias: section for section, aliases in _SECTION_ALIASES.items() for alias in aliases}


class CVParseError(Exception):
    pass


class CVParser:
    """Document model for a single CV file.

    ``parse_cv`` reads and structures the document; ``get_cv_data`` returns the record
    from the last successful parse, or ``None``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._record: Optional[CVRecord] = None

    def get_cv_data(self) -> Optional[CVRecord]:
        return self._record

    async def parse_cv(self) -> CVRecord:
        raw_text = await asyncio.to_thread(extract_text, self.path)
        record = parse_cv_text(raw_text)
        self._record = record
        LOGGER.info(
            "cv_parsed",
            path=str(self.path),
            experience=len(record.experience),
            education=len(record.education),
            skills=len(record.skills),
            text_len=len(record.raw_text),
        )
        return record


def extract_text(path: Path) -> str:
    if not path.exists() or not path.is_file():
        raise CVParseError(f"CV document not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".pdf":
        try:
            with pdfplumber.open(path) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:  # noqa: BLE001
            raise CVParseError(f"Unable to read PDF {path.name}: {exc}") from exc
        text = _CID_RE.sub("", "\n".join(pages))
    elif suffix in SUPPORTED_SUFFIXES:
        text = path.read_text(encoding="utf-8", errors="replace")
    else:
        raise CVParseError(f"Unsupported CV document type: {suffix or path.name}")
    if not text.strip():
        raise CVParseError(f"CV document has no extractable text: {path.name}")
    return text


def parse_cv_text(raw_text: str) -> CVRecord:
    sections = _split_sections(raw_text)
    experience_blocks = _split_entries(sections.get("experience", []))
    education_blocks = _split_entries(sections.get("education", []))
    return CVRecord(
        personal=_parse_personal(
            sections.get("header", []), sections.get("summary", []), raw_text
        ),
        experience=[_experience_entry(block) for block in experience_blocks],
        education=[_education_entry(block) for block in education_blocks],
        skills=_parse_skills(sections.get("skills", [])),
        raw_text=raw_text.strip(),
    )


def _split_sections(raw_text: str) -> Dict[str, List[str]]:
    sections: Dict[str, List[str]] = {"header": []}
    current = "header"
    for raw_line in raw_text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        heading = _HEADINGS.get(re.sub(r"\s+", " ", line.rstrip(":").lower()))
        if heading:
            current = heading
            sections.setdefault(current, [])
            continue
        sections.setdefault(current, []).append(line)
    return sections


def _parse_personal(header: List[str], summary: List[str], raw_text: str) -> Dict[str, str]:
    personal: Dict[str, str] = {}
    contact_lines = [line for line in header if _is_contact_line(line)]
    plain_lines = [line for line in header if not _is_contact_line(line)]
    if plain_lines:
        personal["name"] = plain_lines[0]
    if len(plain_lines) > 1:
        personal["title"] = plain_lines[1]
    contact_text = "\n".join(contact_lines) or raw_text
    for key, pattern in (
        ("email", _EMAIL_RE),
        ("linkedin", _LINKEDIN_RE),
        ("github", _GITHUB_RE),
    ):
        found = pattern.search(contact_text) or pattern.search(raw_text)
        if found:
            personal[key] = found.group().strip()
    phone = _find_phone(contact_text) or _find_phone(raw_text)
    if phone:
        personal["phone"] = phone
    if summary:
        personal["summary"] = " ".join(summary)
    return personal


def _find_phone(text: str) -> str:
    for found in _PHONE_RE.finditer(text):
        candidate = found.group().strip()
        # Year ranges look like phone numbers to the pattern.
        digits = sum(char.isdigit() for char in candidate)
        if digits >= 9 and not _DATE_RANGE_RE.search(candidate):
            return candidate
    return ""


def _is_contact_line(line: str) -> bool:
    return bool(
        _EMAIL_RE.search(line)
        or _find_phone(line)
        or _LINKEDIN_RE.search(line)
        or _GITHUB_RE.search(line)
    )


class _Block:
    def __init__(self, header: List[str], period: str = "") -> None:
        self.header = header
        self.period = period
        self.body: List[str] = []


def _split_entries(lines: List[str]) -> List[_Block]:
    """Group section lines into entries.

    A line holding a date range opens an entry; short lines right before or after it
    form the entry header; bulleted lines form its body.
    """
    blocks: List[_Block] = []
    pending: List[str] = []
    current: Optional[_Block] = None
    previous_was_bullet = False
    for line in lines:
        bullet = _BULLET_RE.match(line)
        if bullet:
            if current is None or pending:
                current = _Block(_header_parts(pending))
                blocks.append(current)
                pending = []
            current.body.append(line[bullet.end():].strip())
            previous_was_bullet = True
            continue
        if previous_was_bullet and current is not None and line[:1].islower():
            current.body[-1] = f"{current.body[-1]} {line}"
            continue
        previous_was_bullet = False
        date = _DATE_RANGE_RE.search(line)
        if date:
            rest = f"{line[:date.start()]} {line[date.end():]}"
            header = _header_parts(pending) + _split_header(rest)
            current = _Block(header, _normalize_period(date.group("range")))
            blocks.append(current)
            pending = []
        elif current is not None and not current.body and len(current.header) < 3:
            current.header.extend(_split_header(line))
        elif current is not None and len(line) > 80:
            current.body.append(line)
        else:
            pending.append(line)
    if pending:
        if current is not None:
            current.body.extend(pending)
        else:
            blocks.append(_Block(_header_parts(pending)))
    return blocks


def _split_header(text: str) -> List[str]:
    parts = (part.strip(" ,;()") for part in _HEADER_SPLIT_RE.split(text))
    return [part for part in parts if part]


def _header_parts(lines: List[str]) -> List[str]:
    return [part for line in lines for part in _split_header(line)]


def _normalize_period(value: str) -> str:
    return _RANGE_SEPARATOR_RE.sub(" - ", value.strip(), count=1)


def _experience_entry(block: _Block) -> ExperienceEntry:
    parts = block.header + ["", "", ""]
    return ExperienceEntry(
        title=parts[0],
        company=parts[1],
        location=parts[2],
        period=block.period,
        highlights=block.body + block.header[3:],
    )


def _education_entry(block: _Block) -> EducationEntry:
    institution = next((part for part in block.header if _INSTITUTION_RE.search(part)), "")
    remaining = [part for part in block.header if part != institution]
    if not institution and len(remaining) > 1:
        institution = remaining.pop(1)
    degree = remaining.pop(0) if remaining else ""
    return EducationEntry(
        degree=degree,
        institution=institution,
        period=block.period,
        details=remaining + block.body,
    )


def _parse_skills(lines: List[str]) -> List[str]:
    skills: List[str] = []
    seen: set[str] = set()
    for line in lines:
        bullet = _BULLET_RE.match(line)
        if bullet:
            line = line[bullet.end():]
        label, sep, rest = line.partition(":")
        if sep and len(label) <= 30:
            line = rest
        for token in _SKILL_SPLIT_RE.split(line):
            skill = token.strip(" .")
            if not skill or len(skill) > 40 or skill.lower() in seen:
                continue
            seen.add(skill.lower())
            skills.append(skill)
    return skills
