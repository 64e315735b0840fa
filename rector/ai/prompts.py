"""Prompt builders for resume markup generation and repair."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

TEMPLATE_PATH = Path(__file__).resolve().parent / "templates" / "resume_template.tex"

JsonDict = dict[str, Any]


@lru_cache(maxsize=1)
def load_resume_template() -> str:
  """Read the LaTeX template once per process."""
  return TEMPLATE_PATH.read_text(encoding="utf-8")


def _dig(hints: JsonDict, *path: str, default: str) -> str:
  """Walk nested hint keys, falling back when any level is missing."""
  node: Any = hints
  for key in path:
    if not isinstance(node, dict):
      return default
    node = node.get(key)
  if node is None or node == "":
    return default
  return str(node)


def _yes_no(hints: JsonDict, *path: str) -> str:
  node: Any = hints
  for key in path:
    if not isinstance(node, dict):
      return "NO"
    node = node.get(key)
  return "YES" if node else "NO"


def render_structure_instructions(hints: JsonDict | None) -> str:
  """Describe the source document's layout so the markup can mirror it."""
  if not hints:
    return ""

  section_order = hints.get("sectionOrder")
  order = " -> ".join(str(item) for item in section_order) if isinstance(section_order, list) and section_order else "Default order"
  titles = json.dumps(hints.get("sectionTitles") or {}, indent=2, ensure_ascii=True)

  lines = [
    "",
    "STRUCTURE PRESERVATION INSTRUCTIONS:",
    "The original resume had the following structure and formatting. PRESERVE THESE CHARACTERISTICS in the generated LaTeX:",
    "",
    f"Section Order: {order}",
    f"Section Titles: {titles}",
    "",
    f"Layout Style: {_dig(hints, 'layout', 'style', default='single-column')}",
    f"Header Style: {_dig(hints, 'layout', 'headerStyle', default='centered')}",
    (
      f"Margins: Top {_dig(hints, 'layout', 'margins', 'top', default='2cm')}, Bottom {_dig(hints, 'layout', 'margins', 'bottom', default='2cm')}, "
      f"Left {_dig(hints, 'layout', 'margins', 'left', default='2cm')}, Right {_dig(hints, 'layout', 'margins', 'right', default='2cm')}"
    ),
    "",
    f"Fonts: Main = {_dig(hints, 'formatting', 'fonts', 'main', default='Charter')}, Heading = {_dig(hints, 'formatting', 'fonts', 'heading', default='Charter-Bold')}",
    (
      f"Font Sizes: Name = {_dig(hints, 'formatting', 'fontSize', 'name', default='25pt')}, Section = {_dig(hints, 'formatting', 'fontSize', 'section', default='14pt')}, "
      f"Body = {_dig(hints, 'formatting', 'fontSize', 'body', default='10pt')}"
    ),
    f"Colors: Primary = {_dig(hints, 'formatting', 'colors', 'primary', default='RGB(0,0,0)')}, Accent = {_dig(hints, 'formatting', 'colors', 'accent', default='RGB(0,0,0)')}",
    f"Spacing: Section Gap = {_dig(hints, 'formatting', 'spacing', 'sectionGap', default='0.3cm')}, Item Gap = {_dig(hints, 'formatting', 'spacing', 'itemGap', default='0.2cm')}",
    f"Bullet Style: {_dig(hints, 'formatting', 'bulletStyle', default='bullet')}",
    "",
    "Visual Elements:",
    f"- Use section lines: {_yes_no(hints, 'visualElements', 'useSectionLines')}",
    f"- Use header line: {_yes_no(hints, 'visualElements', 'useHeaderLine')}",
    f"- Contact layout: {_dig(hints, 'visualElements', 'contactLayout', default='horizontal')}",
    "",
    "IMPORTANT:",
    "1. Follow the section order EXACTLY as specified above",
    "2. Use the EXACT section titles from the original resume",
    "3. Apply the specified margins, fonts, and spacing",
    "4. Match the visual style (lines, bullet points, etc.)",
    "5. If the original used a two-column layout, replicate that structure",
    "6. Maintain the overall visual aesthetic of the original resume",
  ]
  return "\n".join(lines)


def render_markup_prompt(document: JsonDict, hints: JsonDict | None) -> str:
  """Build the prompt that turns resume JSON into a complete LaTeX document."""
  return f"""You are a LaTeX resume generator. Convert the following JSON resume data into LaTeX code using the template format provided below.

IMPORTANT INSTRUCTIONS:
1. Use the template structure provided - keep the preamble, packages, and environment definitions
2. Fill in the template with data from the JSON - replace all "EDIT:" comments with actual data
3. For the header section, use the personalInfo data
4. For dates, format as "Month Year" (e.g., "January 2022", "December 2023")
5. For current positions, use "Current" or "Present" as the end date
6. Include ALL sections from the JSON data (Education, Experience, Internships if present, Technologies)
7. For Technologies section, use the table format from the template
8. Remove any rows in the Technologies table that don't apply to this resume
9. Escape LaTeX special characters (&, %, $, #, _, {{, }}, ~, ^) that appear in the data
{render_structure_instructions(hints)}

TEMPLATE TO USE:
{load_resume_template()}

JSON RESUME DATA:
{json.dumps(document, indent=2, ensure_ascii=False)}

Return ONLY the complete filled LaTeX code. Do not include any explanations, comments, or markdown formatting. The output should be ready to compile directly."""


def render_fix_prompt(markup: str, compiler_error: str) -> str:
  """Build the prompt that repairs markup using the compiler's error excerpt."""
  return f"""The following LaTeX code has compilation errors. Please fix the errors and return the corrected LaTeX code.

IMPORTANT INSTRUCTIONS:
1. Fix ONLY the compilation errors - do NOT change the template structure, formatting, or style
2. Keep all packages, environment definitions, and custom commands unchanged
3. Preserve the exact spacing, indentation, and layout of the original code
4. Only modify the specific parts causing the compilation error
5. Maintain the professional resume template format

COMPILATION ERROR:
{compiler_error}

BUGGY LATEX CODE:
{markup}

Please analyze the error and fix the LaTeX code. Return ONLY the complete corrected LaTeX code that can be directly compiled. Do not include any explanations or markdown formatting."""
