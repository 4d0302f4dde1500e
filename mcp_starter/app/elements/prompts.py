from __future__ import annotations

from mcp_starter.app.descriptors import PromptArgument, PromptDescriptor

GREETING_STYLES = {
    "formal": "Please compose a formal, professional greeting for {name}.",
    "casual": "Write a casual, friendly hello to {name}.",
    "enthusiastic": "Create an excited, enthusiastic greeting for {name}!",
}

REVIEW_FOCUS = {
    "security": "Focus on security vulnerabilities and potential exploits.",
    "performance": "Focus on performance optimizations and efficiency issues.",
    "readability": "Focus on code clarity, naming, and maintainability.",
    "all": "Provide a comprehensive review covering security, performance, and readability.",
}


def greet(name: str, style: str = "casual") -> str:
    # 모르는 스타일은 casual로 처리해요.
    template = GREETING_STYLES.get(style, GREETING_STYLES["casual"])
    return template.format(name=name)


def code_review(code: str, language: str = "python", focus: str = "all") -> str:
    instruction = REVIEW_FOCUS.get(focus, REVIEW_FOCUS["all"])
    return f"Please review the following {language} code. {instruction}\n\n```{language}\n{code}\n```"


def build_prompt_descriptors() -> list[PromptDescriptor]:
    return [
        PromptDescriptor(
            name="greet",
            title="Greeting",
            description="Generate a greeting message",
            arguments=[
                PromptArgument(name="name", description="Name of the person to greet", required=True),
                PromptArgument(
                    name="style",
                    description="The greeting style (formal, casual, enthusiastic)",
                    default="casual",
                ),
            ],
            handler=greet,
        ),
        PromptDescriptor(
            name="code_review",
            title="Code Review",
            description="Review code for potential improvements",
            arguments=[
                PromptArgument(name="code", description="The code to review", required=True),
                PromptArgument(name="language", description="Programming language", default="python"),
                PromptArgument(
                    name="focus",
                    description="What to focus on (security, performance, readability, all)",
                    default="all",
                ),
            ],
            handler=code_review,
        ),
    ]
