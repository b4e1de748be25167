"""LLM prompt templates for X-Ray entity extraction."""
from typing import List


def entity_extraction_prompt(text: str, pass_label: str, existing_names: List[str]) -> str:
    """Generate prompt for one extraction pass.

    Args:
        text: Book text for this pass
        pass_label: Where in the book the text comes from ("beginning", "full text", ...)
        existing_names: Names already known near this part of the book

    Returns:
        Formatted prompt string
    """
    if existing_names:
        known = ", ".join(existing_names)
        known_block = f"""
Entities already identified near this part of the book:
{known}

Reuse these exact names when the text refers to them, and put any new
nicknames or titles for them in "aliases". Do not create a second entry for
someone or something already listed.
"""
    else:
        known_block = ""

    return f"""You are building an X-Ray index for a reader: a guide to the people, places and ideas in a book.

The text below is the {pass_label} section of the book. Extract every significant entity that appears in it. For each entity, provide:

1. **name**: The most complete name used in the text
2. **type**: One of "character", "location", "theme", "term", "event"
3. **aliases**: Other names, nicknames or titles used for the same entity
4. **role**: A few words on their part in the story (e.g. "narrator's sister", "family estate")
5. **description**: 1-3 sentences using ONLY what this text reveals. Do not use outside knowledge of the book and do not anticipate later events
6. **connections**: Names of other entities they are directly linked to in this text
7. **importance**: "major" if central to this part of the story, otherwise "minor"
{known_block}
Return the result as JSON matching this structure:
```json
{{
  "entities": [
    {{
      "name": "Elizabeth Bennet",
      "type": "character",
      "aliases": ["Lizzy", "Miss Bennet"],
      "role": "second Bennet daughter",
      "description": "Quick-witted and independent, she takes an instant dislike to Mr. Darcy at the assembly.",
      "connections": ["Jane Bennet", "Mr. Darcy"],
      "importance": "major"
    }}
  ]
}}
```

TEXT TO ANALYZE:

{text}

Return ONLY the JSON object, no additional text."""
