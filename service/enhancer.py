"""Script improvement through a generative-text service, failing open."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from string import Template
from typing import Any, Mapping, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from domain.prompter import (
    INVALID_CONFIG_CODE,
    PrompterPipelineError,
    PrompterValidationError,
)

LOGGER = logging.getLogger("focus_prompter.enhancer")

ENHANCE_FAILED_CODE = "focus_prompter.enhance.failed"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
GEMINI_MODEL_ENV = "FOCUS_PROMPTER_GEMINI_MODEL"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
SYSTEM_INSTRUCTION = (
    "You are an expert in rhetoric and in scripts for short videos. "
    "Your goal is to make the text easier to speak and more impactful."
)
PROMPT_TEMPLATE = Template(
    "Improve this script for an RSVP teleprompter that shows one word at a time. "
    "Remove bracketed stage directions unless they are essential to the speech, "
    "but keep the intensity and the tone. Aim for impactful, fluent speech. "
    "Reply with the script only.\n\nOriginal script:\n$script"
)


class ScriptEnhancer(Protocol):
    """Anything that can return an improved version of a script."""

    def enhance(self, script: str) -> str: ...


def improve_script(script: str, enhancer: ScriptEnhancer) -> str:
    """Return the enhanced script, or the original one on any failure."""
    try:
        improved = enhancer.enhance(script)
    except Exception as exc:
        LOGGER.warning(
            "%s: keeping original script (%s)", ENHANCE_FAILED_CODE, str(exc).strip()
        )
        return script
    if not improved or not improved.strip():
        LOGGER.warning("%s: enhancer returned no text", ENHANCE_FAILED_CODE)
        return script
    return improved.strip()


def build_generate_config() -> types.GenerateContentConfig:
    """Generation settings carrying the rewriting instruction."""
    return types.GenerateContentConfig(system_instruction=SYSTEM_INSTRUCTION)


@dataclass(frozen=True)
class GeminiScriptEnhancer:
    """Rewrites a script with a Gemini model through the google-genai client.

    ``client`` defaults to ``genai.Client(api_key=...)``; tests pass any object
    exposing ``models.generate_content``.
    """

    api_key: str
    model: str = DEFAULT_GEMINI_MODEL
    client: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.api_key.strip():
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "api key must be non-empty"
            )
        if not self.model.strip():
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, "model must be non-empty"
            )
        if self.client is None:
            object.__setattr__(self, "client", genai.Client(api_key=self.api_key))

    @classmethod
    def from_environment(
        cls, environ: Mapping[str, str] = os.environ
    ) -> "GeminiScriptEnhancer":
        """Build an enhancer from ``GEMINI_API_KEY`` and an optional model name."""
        api_key = environ.get(GEMINI_API_KEY_ENV, "").strip()
        if not api_key:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, f"{GEMINI_API_KEY_ENV} is not set"
            )
        model = environ.get(GEMINI_MODEL_ENV, "").strip() or DEFAULT_GEMINI_MODEL
        return cls(api_key=api_key, model=model)

    def enhance(self, script: str) -> str:
        """Ask the model for an improved script and return its text."""
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=PROMPT_TEMPLATE.substitute(script=script),
                config=build_generate_config(),
            )
        except genai_errors.APIError as exc:
            raise PrompterPipelineError(
                ENHANCE_FAILED_CODE,
                f"enhancement request failed with status {exc.code}: {exc.message}",
            ) from exc
        text = response.text
        if text is None:
            raise PrompterPipelineError(ENHANCE_FAILED_CODE, "response has no text")
        return text
