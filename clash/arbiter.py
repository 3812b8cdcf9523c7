"""Secondary arbiter: an optional second opinion on CONFIRM verdicts.

Arbiters are untrusted. Whatever an implementation returns goes through
apply_arbiter(), which can only turn CONFIRM into a non-hard BLOCK.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from clash.classifier import Decision, Verdict
from clash.config import ArbiterConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArbiterDecision:
    decision: Decision
    reason: str = ""


@runtime_checkable
class ArbiterProtocol(Protocol):
    """Second-opinion capability consulted on CONFIRM verdicts."""

    def decide(self, command: str, signals: list[str], reasons: list[str]) -> ArbiterDecision: ...


class StubArbiter:
    """Always agrees with the ladder."""

    def decide(self, command: str, signals: list[str], reasons: list[str]) -> ArbiterDecision:
        return ArbiterDecision(Decision.CONFIRM, "stub arbiter")


# -- LLM arbiter ---------------------------------------------------------------

_ARBITER_PROMPT = (
    "You review shell commands that an autonomous agent wants to run. "
    "A rule-based gate already flagged the command as risky and will ask a human to confirm it. "
    "Answer BLOCK only when the command is clearly destructive, exfiltrates data, or cannot be "
    "what a developer intended; otherwise answer CONFIRM. Give a one-sentence reason."
)


class _ArbiterOutput(BaseModel):
    decision: Literal["ALLOW", "CONFIRM", "BLOCK"] = Field(
        description="CONFIRM to let the human decide, BLOCK to refuse outright",
    )
    reason: str = Field(description="One sentence explaining the decision")


class LLMArbiter:
    """pydantic-ai backed arbiter for gemini, openai or ollama providers.

    The agent is built on the first decide() call so a misconfigured
    provider only costs anything when arbitration is actually needed.
    """

    def __init__(self, config: ArbiterConfig):
        self.config = config
        self._agent = None

    def _api_key(self) -> str | None:
        if not self.config.api_key_env:
            return None
        return os.getenv(self.config.api_key_env)

    def _build_model(self):
        provider_name = self.config.provider.lower()
        model_name = self.config.model

        if provider_name == "gemini":
            from pydantic_ai.models.google import GoogleModel
            from pydantic_ai.providers.google import GoogleProvider

            api_key = self._api_key()
            if not api_key:
                raise ValueError(
                    f"arbiter provider 'gemini' needs an API key in ${self.config.api_key_env or 'api_key_env'}"
                )
            return GoogleModel(model_name or "gemini-2.0-flash", provider=GoogleProvider(api_key=api_key))

        if provider_name in ("openai", "ollama"):
            from pydantic_ai.models.openai import OpenAIChatModel
            from pydantic_ai.providers.openai import OpenAIProvider

            if provider_name == "ollama":
                # Ollama's OpenAI-compatible API is at /v1
                host = os.getenv("OLLAMA_HOST", "http://localhost:11434")
                provider = OpenAIProvider(base_url=f"{host}/v1", api_key="ollama")
            else:
                provider = OpenAIProvider(api_key=self._api_key())
            return OpenAIChatModel(model_name=model_name, provider=provider)

        raise ValueError(
            f"Unknown arbiter provider: '{self.config.provider}'. Use 'gemini', 'openai', 'ollama' or 'stub'."
        )

    @property
    def agent(self):
        if self._agent is None:
            from pydantic_ai import Agent

            self._agent = Agent(
                self._build_model(),
                output_type=_ArbiterOutput,
                system_prompt=_ARBITER_PROMPT,
            )
        return self._agent

    def decide(self, command: str, signals: list[str], reasons: list[str]) -> ArbiterDecision:
        prompt = (
            f"Command: {command}\n"
            f"Risk signals: {', '.join(signals) or 'none'}\n"
            f"Gate reasons: {', '.join(reasons) or 'none'}"
        )
        result = self.agent.run_sync(prompt)
        return ArbiterDecision(Decision(result.output.decision), result.output.reason)


def build_arbiter(config: ArbiterConfig) -> ArbiterProtocol:
    """Pick an arbiter implementation from policy config."""
    if config.provider.lower() in ("", "stub"):
        return StubArbiter()
    return LLMArbiter(config)


# -- Clamp ---------------------------------------------------------------------


def _as_decision(value: object) -> Decision | None:
    if isinstance(value, Decision):
        return value
    if isinstance(value, str):
        try:
            return Decision(value.upper())
        except ValueError:
            return None
    return None


def apply_arbiter(verdict: Verdict, arbiter: ArbiterProtocol, command: str) -> Verdict:
    """Consult *arbiter* and return the (possibly tightened) verdict.

    Only CONFIRM is ever put to the arbiter, and only BLOCK is ever taken
    from it. The resulting block is never hard. Arbiter failures leave the
    verdict as it was.
    """
    if verdict.decision != Decision.CONFIRM:
        return verdict
    try:
        proposal = arbiter.decide(command, list(verdict.signals), list(verdict.reasons))
    except Exception as e:
        logger.warning("arbiter failed, keeping %s: %s", verdict.decision.value, e)
        return verdict

    decision = _as_decision(getattr(proposal, "decision", None))
    if decision != Decision.BLOCK:
        logger.debug("arbiter proposed %s, keeping CONFIRM", decision)
        return verdict

    reason = str(getattr(proposal, "reason", "") or "no reason given")
    return replace(
        verdict,
        decision=Decision.BLOCK,
        hard=False,
        reasons=verdict.reasons + (f"arbiter: {reason}",),
    )
