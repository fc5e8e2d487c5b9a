# scribe/batch/service/section_prompts.py
from typing import Optional

SECTION_TYPES = [
    ("intro", "introduction"),
    ("literature", "literature_review"),
    ("method", "methodology"),
    ("analysis", "analysis"),
    ("conclusion", "conclusion"),
    ("chapter", "chapter"),
]

SECTION_FOCUS = {
    "introduction": "Establish the problem, its significance and the scope of the project, and close with a clear statement of aims.",
    "literature_review": "Synthesize the existing scholarship thematically, compare positions and identify the gap this project addresses.",
    "methodology": "Justify the research design, data sources and analytical procedures, and discuss validity and limitations.",
    "analysis": "Interpret the evidence in depth, weigh competing explanations and connect findings to the theoretical framework.",
    "conclusion": "Synthesize the argument, state the contribution and outline implications and directions for further work.",
    "chapter": "Develop the chapter topic fully with its own introduction, subsections and synthesis.",
    "default": "Provide comprehensive, well-structured coverage of the section topic.",
}

CLEANUP_INSTRUCTION = (
    "FINAL INSTRUCTION: Deliver ONLY the complete academic content in clean Markdown format. "
    "Remove any meta-text, continuation prompts, word count discussions, or bracketed notes. "
    "Do not ask questions or include any text about continuing or word count targets."
)


def section_type(custom_id: str) -> str:
    lowered = custom_id.lower()
    for needle, kind in SECTION_TYPES:
        if needle in lowered:
            return kind
    return "default"


def section_system_prompt(kind: str, project_title: str, citation_style: str, context: Optional[str] = None) -> str:
    prompt = (
        f'You are ScribeAI, an academic writing assistant working on a large project titled "{project_title}" '
        f"using {citation_style} citation style.\n\n"
        "OUTPUT REQUIREMENTS:\n"
        "- Generate at least 2,500 words for this section\n"
        "- Write continuous academic prose in rich paragraphs under markdown headings (#, ##, ###)\n"
        "- Avoid bullet points and outline-style enumeration in the main body\n"
        f"- Integrate citations in {citation_style} format throughout\n"
        "- Do not include meta commentary, bracketed notes, disclaimers or continuation questions\n\n"
        f"SECTION FOCUS: {SECTION_FOCUS.get(kind, SECTION_FOCUS['default'])}"
    )
    if context:
        prompt += f"\n\nCONTENT FOCUS: {context}"
    return prompt
