"""
Gateway: the core of codeyaar.

One pipeline behind every assistant endpoint:

    authenticate -> rate check -> validate -> content filter
        -> compose prompt -> call upstream -> relay / decode -> record

Any stage can short-circuit with a GatewayError; main.py turns those into
HTTP responses. Nothing here outlives a request except the collaborators
passed in at construction (identity, quota and history stores, the
upstream backend, the wire log).

Streaming:
  The upstream SSE body is forwarded line by line as it arrives while the
  same bytes feed a StreamDecoder. When upstream finishes, the decoder's
  uncertainty scan decides whether a `data: {"warning": true}` frame goes
  out ahead of the final `data: [DONE]`, and the assembled answer is
  written to the history store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator

from codeyaar import roadmap
from codeyaar.auth import Authenticator, Caller, SupabaseIdentityProvider
from codeyaar.backends import BackendError, BackendStream, make_backend
from codeyaar.connection import SupabaseConnection
from codeyaar.errors import (
    ContentBlocked,
    MalformedRequest,
    UpstreamBusy,
    UpstreamQuotaExceeded,
    UpstreamUnavailable,
)
from codeyaar.history import HistoryStore, HistoryStoreError, InteractionRecord, SupabaseHistoryStore
from codeyaar.policy import Policy, build_policy
from codeyaar.prompts import CHAT, LearningContext, PromptComposer
from codeyaar.quota import UNCHECKED, RateLimitDecision, RateLimiter, SupabaseQuotaStore
from codeyaar.relay import UpstreamRelay
from codeyaar.safety import ContentFilter
from codeyaar.sse import StreamDecoder, detect_uncertainty, iter_deltas
from codeyaar.wiretap import WireLog

logger = logging.getLogger(__name__)

WARNING_FRAME = 'data: {"warning": true}\n\n'
DONE_FRAME = "data: [DONE]\n\n"
NO_RESPONSE = "I couldn't generate a response."


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value) -> str:
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Request shapes
# ---------------------------------------------------------------------------

@dataclass
class Admission:
    """An authenticated, rate-checked caller."""
    caller: Caller
    quota: RateLimitDecision = field(default_factory=lambda: UNCHECKED)


@dataclass
class CodeRequest:
    """Body of /ai-code-assistant."""
    mode: str
    code: str
    language: str | None = None
    model_id: str | None = None
    stream: bool = True

    @classmethod
    def from_body(cls, body: dict, default_model_id: str = "") -> "CodeRequest":
        return cls(
            mode=_text(body.get("mode")),
            code=_text(body.get("code")),
            language=_text(body.get("language")) or None,
            model_id=_text(body.get("model")) or default_model_id or None,
            stream=body.get("stream", True) is not False,
        )


@dataclass
class LearningRequest:
    """Body of /learning-assistant."""
    message: str
    context: LearningContext
    model_id: str | None = None

    @classmethod
    def from_body(cls, body: dict) -> "LearningRequest":
        context = body.get("context")
        return cls(
            message=_text(body.get("message")),
            context=LearningContext.from_dict(context if isinstance(context, dict) else None),
            model_id=_text(body.get("model")) or None,
        )


@dataclass
class AssistantResult:
    """A fully assembled code-assistant answer (non-streaming callers)."""
    output: str
    warning: bool
    model: str

    def to_body(self, quota: RateLimitDecision | None = None) -> dict:
        body = {"response": self.output, "warning": self.warning}
        if quota is not None and quota.remaining is not None:
            body["remaining"] = quota.remaining
        return body


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class Gateway:
    """Consolidated AI proxy behind the code assistant, learning assistant and roadmap."""

    def __init__(
        self,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        relay: UpstreamRelay,
        policy: Policy,
        history: HistoryStore | None = None,
        wire: WireLog | None = None,
        cfg: dict | None = None,
    ):
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.relay = relay
        self.policy = policy
        self.history = history
        self.wire = wire
        self.content_filter = ContentFilter(policy.unsafe_patterns)
        self.composer = PromptComposer(policy.language_contexts)

        cfg = cfg or {}
        code_cfg = cfg.get("code_assistant", {})
        self.code_default_model_id = code_cfg.get("default_model_id", "gemini-2.5-flash")
        self.code_temperature = code_cfg.get("temperature", 0.3)

        learn_cfg = cfg.get("learning", {})
        self.learning_model_id = learn_cfg.get("model_id", "gemini-3-flash-preview")
        self.learning_temperature = learn_cfg.get("temperature", 0.7)
        self.learning_max_tokens = learn_cfg.get("max_tokens", 2000)
        self.filter_chat = learn_cfg.get("content_filter", False)

        roadmap_cfg = cfg.get("roadmap", {})
        self.roadmap_model_id = roadmap_cfg.get("model_id", "gemini-3-flash-preview")
        self.roadmap_temperature = roadmap_cfg.get("temperature", 0.7)

    @classmethod
    def from_config(cls, cfg: dict) -> "Gateway":
        """Wire up the Supabase-backed stores and the upstream backend from config."""
        policy = build_policy(cfg)

        sb = cfg.get("supabase", {})
        sb_url = sb.get("url", "")
        service = SupabaseConnection(sb_url, sb.get("service_role_key", ""))

        identity = SupabaseIdentityProvider(SupabaseConnection(sb_url, sb.get("anon_key", "")))

        rl_cfg = cfg.get("rate_limit", {})
        limiter = RateLimiter(
            SupabaseQuotaStore(service, rpc=sb.get("rate_limit_rpc", "check_ai_rate_limit")),
            fail_open=rl_cfg.get("fail_open", True),
            enabled=rl_cfg.get("enabled", True),
        )

        history = None
        if cfg.get("history", {}).get("enabled", True):
            history = SupabaseHistoryStore(service, table=sb.get("history_table", "ai_chat_history"))

        wire = None
        wt_cfg = cfg.get("wiretap", {})
        if wt_cfg.get("enabled", False):
            wire = WireLog(wt_cfg.get("path", "./data/wire.jsonl"))

        relay = UpstreamRelay(make_backend(cfg.get("upstream", {})), policy)

        return cls(
            authenticator=Authenticator(identity),
            rate_limiter=limiter,
            relay=relay,
            policy=policy,
            history=history,
            wire=wire,
            cfg=cfg,
        )

    # -- admission ----------------------------------------------------------

    async def admit(self, authorization: str | None, rate_limited: bool = True) -> Admission:
        """Authenticate, then (optionally) spend one unit of daily quota."""
        caller = await self.authenticator.authenticate(authorization)
        if not rate_limited:
            return Admission(caller=caller)
        decision = await self.rate_limiter.check(caller.id)
        return Admission(caller=caller, quota=decision)

    # -- helpers ------------------------------------------------------------

    def _tap(self, direction: str, event: str, content: str = "", **fields):
        if self.wire is not None:
            self.wire.log(direction=direction, event=event, content=content, **fields)

    async def _store(self, record: InteractionRecord):
        if self.history is None:
            return
        try:
            await self.history.insert(record)
        except HistoryStoreError as e:
            logger.error("Failed to save chat history for user %s: %s", record.caller_id, e)

    def _check_length(self, text: str, limit: int):
        if len(text) > limit:
            raise MalformedRequest(f"Input too long. Maximum {limit:,} characters.")

    async def screen(self, caller: Caller, mode: str, language: str | None, payload: str, model: str = ""):
        """Run the content filter; on a hit, audit a redacted record and reject."""
        verdict = self.content_filter.evaluate(payload)
        if not verdict.blocked:
            return
        logger.warning(
            "Unsafe content detected from user %s (pattern=%s, mode=%s)",
            caller.id, verdict.matched_pattern, mode,
        )
        marker = self.policy.redaction_marker
        self._tap("internal", "blocked", marker, caller_id=caller.id, mode=mode, model=model,
                  pattern=verdict.matched_pattern)
        await self._store(InteractionRecord.blocked_request(caller.id, mode, language, model, marker))
        raise ContentBlocked()

    # -- code assistant -----------------------------------------------------

    async def _prepare_code(self, caller: Caller, req: CodeRequest) -> tuple[list[dict], str]:
        if not req.mode or not req.code:
            raise MalformedRequest()
        self._check_length(req.code, self.policy.max_code_chars)

        model = self.relay.resolve_model(req.model_id)
        await self.screen(caller, req.mode, req.language, req.code, model)

        messages = self.composer.compose_code(req.mode, req.code, req.language)
        logger.info(
            "Processing %s request for %s with model %s by user %s",
            req.mode, req.language or "unknown", model, caller.id,
        )
        self._tap("inbound", req.mode, req.code, caller_id=caller.id, mode=req.mode, model=model)
        return messages, model

    async def _upstream_lines(self, upstream: BackendStream, decoder: StreamDecoder) -> AsyncIterator[str]:
        """Forwardable SSE lines, in upstream order. The [DONE] line is held back."""
        async for chunk in upstream.aiter_bytes():
            for frame in decoder.feed(chunk):
                if frame.done:
                    break
                yield frame.raw + "\n"
            if decoder.done:
                break
        for frame in decoder.finish():
            if not frame.done:
                yield frame.raw + "\n"

    async def _finish_interaction(
        self, admission: Admission, req: CodeRequest, model: str, decoder: StreamDecoder, started_at: str,
    ):
        output = decoder.output
        logger.info(
            "AI request completed for user %s, mode: %s, model: %s, chars: %d, warning: %s, remaining: %s",
            admission.caller.id, req.mode, model, len(output), decoder.has_warning,
            admission.quota.remaining if admission.quota.remaining is not None else "unknown",
        )
        if decoder.malformed:
            logger.debug("Skipped %d malformed frames", decoder.malformed)
        self._tap("outbound", req.mode, output, caller_id=admission.caller.id, mode=req.mode,
                  model=model, warning=decoder.has_warning)
        if not output:
            return
        await self._store(InteractionRecord(
            caller_id=admission.caller.id,
            mode=req.mode,
            language=req.language,
            model=req.model_id or model,
            input_excerpt=req.code,
            full_output=output,
            started_at=started_at,
            finished_at=_now(),
            has_warning=decoder.has_warning,
        ))

    async def _relay_stream(
        self, upstream: BackendStream, admission: Admission, req: CodeRequest, model: str,
    ) -> AsyncIterator[str]:
        decoder = StreamDecoder(self.policy.uncertainty_phrases)
        started_at = _now()
        completed = False
        try:
            async for line in self._upstream_lines(upstream, decoder):
                yield line
            completed = True
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Client disconnected mid-stream (user %s), closing upstream", admission.caller.id)
            raise
        except BackendError as e:
            logger.error("Upstream stream broke for user %s: %s", admission.caller.id, e)
        finally:
            await upstream.aclose()

        if not completed:
            return
        if decoder.has_warning:
            yield WARNING_FRAME
        yield DONE_FRAME
        await self._finish_interaction(admission, req, model, decoder, started_at)

    async def stream_code(self, admission: Admission, req: CodeRequest) -> AsyncIterator[str]:
        """
        Validate, filter and open the upstream stream. Every rejection is
        raised here, before the caller commits to a 200; the returned
        iterator only relays.
        """
        messages, model = await self._prepare_code(admission.caller, req)
        upstream = await self.relay.open_stream(messages, model, temperature=self.code_temperature)
        return self._relay_stream(upstream, admission, req, model)

    async def run_code(self, admission: Admission, req: CodeRequest) -> AssistantResult:
        """Same pipeline, but decode the whole stream and answer once."""
        messages, model = await self._prepare_code(admission.caller, req)
        upstream = await self.relay.open_stream(messages, model, temperature=self.code_temperature)
        decoder = StreamDecoder(self.policy.uncertainty_phrases)
        started_at = _now()
        try:
            async for _ in iter_deltas(upstream.aiter_bytes(), decoder):
                pass
        except BackendError as e:
            logger.error("Upstream stream broke for user %s: %s", admission.caller.id, e)
            raise UpstreamUnavailable() from e
        finally:
            await upstream.aclose()

        await self._finish_interaction(admission, req, model, decoder, started_at)
        return AssistantResult(output=decoder.output, warning=decoder.has_warning, model=model)

    # -- learning assistant -------------------------------------------------

    async def learning_reply(self, admission: Admission, req: LearningRequest) -> dict:
        if not req.message:
            raise MalformedRequest("Message is required")
        self._check_length(req.message, self.policy.max_message_chars)
        self._check_length(req.context.user_code, self.policy.max_code_chars)

        model = self.relay.resolve_model(req.model_id or self.learning_model_id)
        if self.filter_chat:
            payload = f"{req.message}\n{req.context.user_code}"
            await self.screen(admission.caller, CHAT, req.context.language or None, payload, model)

        messages = self.composer.compose_chat(req.message, req.context)
        self._tap("inbound", CHAT, req.message, caller_id=admission.caller.id, mode=CHAT, model=model)

        try:
            response = await self.relay.complete(
                messages, model,
                temperature=self.learning_temperature,
                max_tokens=self.learning_max_tokens,
            )
        except UpstreamBusy as e:
            raise UpstreamBusy("Service busy. Please try again.") from e
        except (UpstreamQuotaExceeded, UpstreamUnavailable) as e:
            raise UpstreamUnavailable("Failed to get response") from e

        content = response.content or NO_RESPONSE
        logger.info("Learning assistant responded to user %s", admission.caller.id)
        self._tap("outbound", CHAT, content, caller_id=admission.caller.id, mode=CHAT, model=model)

        body = {"response": content}
        if detect_uncertainty(content, self.policy.uncertainty_phrases):
            body["warning"] = True
        return body

    # -- roadmap ------------------------------------------------------------

    async def generate_roadmap(self, admission: Admission, body: dict) -> dict:
        language = _text(body.get("language"))
        level = _text(body.get("level"))
        if not language or not level:
            raise MalformedRequest("Missing language or level")
        if not self.relay.backend.configured:
            logger.error("Upstream API key not configured")
            raise UpstreamUnavailable("Service unavailable")

        steps = roadmap.step_count(level, body.get("stepsCount"))
        model = self.relay.resolve_model(self.roadmap_model_id)
        logger.info("Generating %d-step roadmap for %s (%s)", steps, language, level)

        try:
            response = await self.relay.complete(
                roadmap.build_messages(language, level, steps), model,
                temperature=self.roadmap_temperature,
            )
        except UpstreamQuotaExceeded as e:
            raise UpstreamQuotaExceeded("AI service quota exceeded.") from e
        except UpstreamUnavailable:
            logger.warning("Roadmap upstream failed, serving fallback roadmap")
            return {"roadmap": roadmap.fallback_roadmap(language, level, steps)}

        try:
            steps_list = roadmap.parse_roadmap(response.content, language)
        except ValueError as e:
            logger.error("Failed to parse roadmap JSON: %s", e)
            steps_list = roadmap.fallback_roadmap(language, level, steps)

        logger.info("Generated %d-step roadmap for user %s", len(steps_list), admission.caller.id)
        return {"roadmap": steps_list[:steps]}
