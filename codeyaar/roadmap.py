"""
Learning roadmap generation.

Asks the upstream for an N-step JSON array of lessons and normalizes
whatever comes back. When the model's answer cannot be used (bad JSON,
empty array, upstream error other than 429/402) a canned roadmap built
from a small topic table is returned instead, so the learner always
gets something to start with.
"""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)

LEVEL_STEPS = {
    "beginner": 20,
    "intermediate": 15,
    "advanced": 12,
}
DEFAULT_STEPS = 15
MAX_STEPS = 20

ROADMAP_SYSTEM_PROMPT = """You are an expert programming instructor. Generate a {steps}-step learning roadmap for {language} at the {level} level.

CRITICAL: Return ONLY a valid JSON array. No markdown, no code blocks, no explanation - just the raw JSON array.

Each step must have this exact structure:
{{
  "id": number,
  "title": "Short title (3-6 words)",
  "concept": "One sentence description",
  "tutorial": "2-3 paragraphs explaining the concept with examples",
  "code": "Runnable code example (5-15 lines) with comments",
  "task": "A practice exercise",
  "whatToLearn": ["Point 1", "Point 2", "Point 3"]
}}

For {level} level:
- Beginner: Start from basics (variables, types), progress to functions, loops, basic OOP
- Intermediate: Cover OOP, data structures, algorithms, error handling
- Advanced: Design patterns, optimization, system design, advanced features

Return exactly {steps} steps in a JSON array."""

ROADMAP_USER_PROMPT = (
    "Generate a {steps}-step {language} learning roadmap for {level} level. "
    "Return ONLY the JSON array, nothing else."
)

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def step_count(level: str, requested: int | None = None) -> int:
    """Requested count, else the level default, capped at MAX_STEPS."""
    try:
        requested = int(requested) if requested else 0
    except (TypeError, ValueError):
        requested = 0
    return min(requested or LEVEL_STEPS.get(level, DEFAULT_STEPS), MAX_STEPS)


def build_messages(language: str, level: str, steps: int) -> list[dict]:
    fmt = {"language": language, "level": level, "steps": steps}
    return [
        {"role": "system", "content": ROADMAP_SYSTEM_PROMPT.format(**fmt)},
        {"role": "user", "content": ROADMAP_USER_PROMPT.format(**fmt)},
    ]


def _strip_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def normalize_step(step: dict, idx: int, language: str) -> dict:
    """Fill in any missing field of a model-produced step."""
    points = step.get("whatToLearn")
    return {
        "id": step.get("id") or idx + 1,
        "title": step.get("title") or f"Step {idx + 1}",
        "concept": step.get("concept") or f"Learn {language} concept",
        "tutorial": step.get("tutorial") or f"This step covers an important {language} concept.",
        "code": step.get("code") or f'// {language} example\nconsole.log("Step {idx + 1}");',
        "task": step.get("task") or "Practice this concept",
        "whatToLearn": points if isinstance(points, list) else ["Key concept", "Practice coding", "Apply knowledge"],
    }


def parse_roadmap(content: str, language: str) -> list[dict]:
    """
    Parse the model's answer into a list of steps.

    Raises:
        ValueError: if no non-empty JSON array of objects can be recovered.
    """
    text = _strip_fences(content)
    match = _ARRAY_RE.search(text)
    data = json.loads(match.group(0) if match else text)
    if not isinstance(data, list) or not data:
        raise ValueError("Invalid roadmap format")
    return [normalize_step(step if isinstance(step, dict) else {}, i, language) for i, step in enumerate(data)]


# ---------------------------------------------------------------------------
# Fallback roadmap
# ---------------------------------------------------------------------------

def _topic(title, concept, description, python_code, other_code, task, points):
    return {
        "title": title,
        "concept": concept,
        "description": description,
        "python": python_code,
        "other": other_code,
        "task": task,
        "points": points,
    }


BEGINNER_TOPICS = [
    _topic(
        "Variables and Data Types",
        "Understanding how to store and work with data",
        "Variables are containers for storing data values. Understanding data types is fundamental to programming.",
        '# Variables in Python\nname = "Alice"\nage = 25\nheight = 5.6\nis_student = True\n\nprint(f"{name} is {age} years old")',
        '// Variables in {language}\nlet name = "Alice";\nlet age = 25;\nlet height = 5.6;\nlet isStudent = true;\n\nconsole.log(name + " is " + age + " years old");',
        "Create variables to store your personal information",
        ["Variable declaration", "Data types", "Type conversion"],
    ),
    _topic(
        "Control Flow - Conditionals",
        "Making decisions in your code with if/else",
        "Conditional statements allow your program to make decisions based on conditions.",
        '# If-else in Python\nage = 18\n\nif age >= 18:\n    print("You are an adult")\nelif age >= 13:\n    print("You are a teenager")\nelse:\n    print("You are a child")',
        '// If-else in {language}\nlet age = 18;\n\nif (age >= 18) {\n  console.log("You are an adult");\n} else if (age >= 13) {\n  console.log("You are a teenager");\n} else {\n  console.log("You are a child");\n}',
        "Write a program that grades a test score",
        ["If statements", "Else clauses", "Comparison operators"],
    ),
    _topic(
        "Loops",
        "Repeating actions with for and while loops",
        "Loops allow you to repeat code multiple times without writing it out each time.",
        '# Loops in Python\nfor i in range(5):\n    print(f"Count: {i}")\n\nfruits = ["apple", "banana", "orange"]\nfor fruit in fruits:\n    print(fruit)',
        '// Loops in {language}\nfor (let i = 0; i < 5; i++) {\n  console.log("Count: " + i);\n}\n\nconst fruits = ["apple", "banana", "orange"];\nfor (const fruit of fruits) {\n  console.log(fruit);\n}',
        "Create a loop that prints numbers 1 to 10",
        ["For loops", "While loops", "Loop control"],
    ),
    _topic(
        "Functions",
        "Creating reusable blocks of code",
        "Functions help organize code into reusable pieces and make programs easier to understand.",
        '# Functions in Python\ndef greet(name):\n    return f"Hello, {name}!"\n\ndef add(a, b):\n    return a + b\n\nprint(greet("World"))\nprint(add(5, 3))',
        '// Functions in {language}\nfunction greet(name) {\n  return "Hello, " + name + "!";\n}\n\nfunction add(a, b) {\n  return a + b;\n}\n\nconsole.log(greet("World"));\nconsole.log(add(5, 3));',
        "Write a function that calculates the area of a rectangle",
        ["Function definition", "Parameters", "Return values"],
    ),
    _topic(
        "Arrays and Lists",
        "Working with collections of data",
        "Arrays (or lists) allow you to store multiple values in a single variable.",
        '# Lists in Python\nnumbers = [1, 2, 3, 4, 5]\n\n# Add element\nnumbers.append(6)\n\n# Access elements\nfirst = numbers[0]\nlast = numbers[-1]\n\nprint(f"Sum: {sum(numbers)}")',
        '// Arrays in {language}\nconst numbers = [1, 2, 3, 4, 5];\n\n// Add element\nnumbers.push(6);\n\n// Access elements\nconst first = numbers[0];\nconst last = numbers[numbers.length - 1];\n\nconsole.log("Sum: " + numbers.reduce((a, b) => a + b));',
        "Create an array and find the maximum value",
        ["Array creation", "Indexing", "Array methods"],
    ),
]

INTERMEDIATE_TOPICS = [
    _topic(
        "Object-Oriented Programming",
        "Organizing code with classes and objects",
        "OOP helps structure code by grouping related data and functions together.",
        '# Classes in Python\nclass Dog:\n    def __init__(self, name, age):\n        self.name = name\n        self.age = age\n\n    def bark(self):\n        return f"{self.name} says woof!"\n\nmy_dog = Dog("Buddy", 3)\nprint(my_dog.bark())',
        '// Classes in {language}\nclass Dog {\n  constructor(name, age) {\n    this.name = name;\n    this.age = age;\n  }\n\n  bark() {\n    return this.name + " says woof!";\n  }\n}\n\nconst myDog = new Dog("Buddy", 3);\nconsole.log(myDog.bark());',
        "Create a class representing a bank account",
        ["Classes", "Constructors", "Methods"],
    ),
    _topic(
        "Error Handling",
        "Gracefully handling errors in your code",
        "Error handling prevents your program from crashing when something goes wrong.",
        '# Error handling in Python\ntry:\n    result = 10 / 0\nexcept ZeroDivisionError:\n    print("Cannot divide by zero!")\nexcept Exception as e:\n    print(f"Error: {e}")\nfinally:\n    print("Cleanup done")',
        '// Error handling in {language}\ntry {\n  const result = JSON.parse("invalid json");\n} catch (error) {\n  console.error("Parse error:", error.message);\n} finally {\n  console.log("Cleanup done");\n}',
        "Add error handling to a file reading function",
        ["Try-catch blocks", "Exception types", "Finally clause"],
    ),
]


def _topics_for(level: str) -> list[dict]:
    if level == "beginner":
        return BEGINNER_TOPICS
    if level == "intermediate":
        return BEGINNER_TOPICS + INTERMEDIATE_TOPICS
    return INTERMEDIATE_TOPICS + BEGINNER_TOPICS


def fallback_roadmap(language: str, level: str, steps: int) -> list[dict]:
    """Deterministic roadmap cycling through the topic table."""
    topics = _topics_for(level)
    is_python = language.lower() == "python"
    roadmap = []
    for i in range(steps):
        topic = topics[i % len(topics)]
        code = topic["python"] if is_python else topic["other"].replace("{language}", language)
        roadmap.append({
            "id": i + 1,
            "title": topic["title"],
            "concept": topic["concept"],
            "tutorial": (
                f"In this step, you'll learn about {topic['title'].lower()} in {language}. "
                f"{topic['description']} This is an essential skill for any {language} developer."
            ),
            "code": code,
            "task": f"Practice: {topic['task']}",
            "whatToLearn": list(topic["points"]),
        })
    return roadmap
