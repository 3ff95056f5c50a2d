"""
Prompt composer — turns (mode, language, payload) into the two-message
conversation sent upstream: one system message picked by mode, one user
message made of a language context sentence plus the payload.

The templates ask the model to refuse unsafe code and to answer with a
fixed uncertainty phrase when unsure. Nothing here enforces that; the
stream decoder looks for those phrases in the output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

GENERATE = "generate"
DEBUG = "debug"
EXPLAIN = "explain"
CHAT = "chat"

CODE_MODES = (GENERATE, DEBUG, EXPLAIN)


SYSTEM_PROMPTS = {
    GENERATE: """You are an expert coding assistant specializing in educational code generation.
Your role is to generate clean, well-documented, and SAFE code that helps students learn.

CRITICAL RULES:
- NEVER generate malicious, harmful, or unsafe code (no system commands, file deletions, network exploits)
- NEVER generate code that could damage systems or compromise security
- If the request is unclear or potentially harmful, respond with: "I'm not certain about this request. Please provide more details or verify the intent."
- Always include comments explaining key concepts
- Use best practices and idiomatic code patterns
- Provide clear, descriptive variable names
- Structure code in a readable, maintainable way
- Include error handling where appropriate
- For Python: use type hints, docstrings, and PEP 8 style
- For JavaScript: use modern ES6+ syntax, async/await patterns
- For C++: include proper headers, use RAII patterns
- For HTML/CSS: use semantic elements, accessibility best practices

FORMAT YOUR RESPONSE:
- Use markdown headers (##, ###) for sections
- Wrap code in ```language code blocks
- Separate code from explanations clearly
- Use bullet points for key points
- Highlight important warnings""",

    DEBUG: """You are an expert debugging assistant for coding education.
Your role is to help students find and fix errors in their code.

CRITICAL RULES:
- NEVER suggest fixes that could introduce security vulnerabilities
- If unsure about a fix, state: "I'm not certain about this solution. Please verify before using."
- Identify ALL syntax and logic issues in the code
- Explain WHY each issue is a problem in simple terms
- Provide corrected code with fixes clearly marked
- Teach the student how to avoid similar errors
- Suggest debugging strategies and tools
- Be encouraging and educational
- Highlight common pitfalls for the specific language

FORMAT YOUR RESPONSE:
## Issues Found
List each issue with explanation

## Corrected Code
```language
corrected code here
```

## Explanation
Step by step explanation of fixes""",

    EXPLAIN: """You are an expert code explanation assistant.
Your role is to help students understand how code works step by step.

GUIDELINES:
- Break down the code into logical sections
- Explain each part in simple, beginner-friendly terms
- Describe the execution flow and what happens at runtime
- Highlight important programming concepts and patterns
- Use analogies when helpful for understanding
- Point out any potential issues or improvements
- Explain time/space complexity when relevant
- Connect concepts to broader programming principles

FORMAT YOUR RESPONSE:
## Overview
Brief summary of what the code does

## Step-by-Step Breakdown
Detailed explanation with code snippets

## Key Concepts
Important programming concepts used

## Tips & Best Practices
Suggestions for improvement""",
}

MENTOR_PROMPT = """You are a patient, encouraging coding mentor helping a student learn {subject}.

Current context:
- Language: {language}
- Current topic: {topic}
- Concept: {concept}

Your role:
1. EXPLAIN concepts in simple, beginner-friendly terms
2. USE analogies and real-world examples
3. PROVIDE code examples when helpful
4. ENCOURAGE the student and celebrate progress
5. STAY FOCUSED on the current topic unless asked otherwise
6. DEBUG errors step-by-step with clear explanations
7. NEVER give complete solutions - guide them to discover answers

If the student shares code, analyze it carefully and provide constructive feedback.
If you are unsure about something, say "I'm not sure" rather than guessing.
Keep responses concise but thorough (2-4 paragraphs max).
Use markdown for formatting: **bold** for emphasis, `code` for inline code."""

# Instruction placed between the language sentence and the payload
USER_INSTRUCTIONS = {
    GENERATE: "Generate clean, well-documented, and SAFE code for:",
    DEBUG: "Debug this code. Identify issues, explain them, and provide corrected code:",
    EXPLAIN: "Explain this code step by step for a beginner:",
}


def _str(value) -> str:
    return value if isinstance(value, str) else ""


@dataclass
class LearningContext:
    """Where the student is in a lesson, as sent by the learning UI."""
    language: str = ""
    step_title: str = ""
    step_concept: str = ""
    step_tutorial: str = ""
    user_code: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "LearningContext":
        data = data or {}
        return cls(
            language=_str(data.get("language")),
            step_title=_str(data.get("stepTitle")),
            step_concept=_str(data.get("stepConcept")),
            step_tutorial=_str(data.get("stepTutorial")),
            user_code=_str(data.get("userCode")),
        )


class PromptComposer:
    """Builds upstream message lists from the policy's language table."""

    def __init__(self, language_contexts: Mapping[str, str]):
        self.language_contexts = language_contexts

    def language_context(self, language: str | None) -> str:
        if not language:
            return "Programming language: not specified."
        known = self.language_contexts.get(language.lower())
        if known:
            return known
        return f"Programming language: {language}."

    def system_prompt(self, mode: str) -> str:
        # Unknown modes get the generation prompt
        return SYSTEM_PROMPTS.get(mode, SYSTEM_PROMPTS[GENERATE])

    def compose_code(self, mode: str, code: str, language: str | None) -> list[dict]:
        """Messages for the generate/debug/explain code assistant."""
        instruction = USER_INSTRUCTIONS.get(mode)
        if instruction:
            user = f"{self.language_context(language)}\n\n{instruction}\n\n{code}"
        else:
            user = code
        return [
            {"role": "system", "content": self.system_prompt(mode)},
            {"role": "user", "content": user},
        ]

    def compose_chat(self, message: str, context: LearningContext | None = None) -> list[dict]:
        """Messages for the free-form learning mentor."""
        ctx = context or LearningContext()
        system = MENTOR_PROMPT.format(
            subject=ctx.language or "programming",
            language=ctx.language or "Not specified",
            topic=ctx.step_title or "General",
            concept=ctx.step_concept,
        )
        if ctx.step_tutorial:
            system += f"\n\nLesson material the student is reading:\n{ctx.step_tutorial}"

        user = message
        if ctx.user_code:
            user = f"{message}\n\nMy current code:\n```{ctx.language}\n{ctx.user_code}\n```"

        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
