"""Intent learning, matching and proactive firing.

Intents are learned from (utterance, action) pairs. Keywords are the
case-folded whitespace tokens longer than three characters. A new utterance
whose keywords are mostly known to an existing intent reinforces that intent
instead of creating a near-duplicate.

Matching scores every intent by keyword overlap weighted by confidence and
returns the best one above the threshold. Iteration follows insertion order,
so on equal scores the intent learned first wins.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from automation_engine.config import EngineSettings

from .collaborators import MemoryRecall, ProactiveAnalyzer, resolve
from .models import UserIntent, utc_now
from .store import JsonListFile
from .ticker import Ticker, TickerHandle

logger = logging.getLogger(__name__)

Dispatch = Callable[[str], Awaitable[Any]]

MEMORY_RECALL_LIMIT = 20


def tokenize(text: str) -> list[str]:
    return text.lower().split()


def extract_keywords(text: str) -> list[str]:
    """Tokens longer than three characters, de-duplicated in first-seen order."""

    return list(dict.fromkeys(token for token in tokenize(text) if len(token) > 3))


@dataclass(frozen=True, slots=True)
class IntentMatch:
    intent: UserIntent
    score: float


class IntentEngine:
    def __init__(
        self,
        *,
        file: JsonListFile[UserIntent],
        dispatch: Dispatch,
        ticker: Ticker,
        settings: EngineSettings,
        clock: Callable[[], datetime] = utc_now,
        memory: MemoryRecall | None = None,
        analyzer: ProactiveAnalyzer | None = None,
    ) -> None:
        self._file = file
        self._dispatch = dispatch
        self._ticker = ticker
        self._settings = settings
        self._clock = clock
        self._memory = memory
        self._analyzer = analyzer
        self._intents: dict[str, UserIntent] = {}
        self._handle: TickerHandle | None = None
        self._inflight: set[asyncio.Task[bool]] = set()

    def load(self) -> list[UserIntent]:
        self._intents = {intent.id: intent for intent in self._file.load()}
        logger.info("Intents loaded", extra={"count": len(self._intents)})
        return self.list()

    def save(self) -> None:
        self._file.save(self._intents.values())

    def list(self) -> list[UserIntent]:
        return list(self._intents.values())

    def get(self, intent_id: str) -> UserIntent | None:
        return self._intents.get(intent_id)

    def learn(self, utterance: str, action: str, workflow: str | None = None) -> UserIntent:
        """Reinforce a similar intent or create a new one."""

        keywords = extract_keywords(utterance)
        required = len(keywords) * self._settings.intent_reinforce_overlap

        if keywords:
            for intent in self._intents.values():
                known = set(intent.keywords)
                overlap = sum(1 for keyword in keywords if keyword in known)
                if overlap >= required:
                    intent.confidence = min(
                        1.0, intent.confidence + self._settings.intent_reinforcement
                    )
                    intent.learned_from.append(utterance)
                    intent.trigger_count += 1
                    if workflow is not None:
                        intent.workflow = workflow
                    self.save()
                    logger.info(
                        "Intent reinforced",
                        extra={"intent_id": intent.id, "confidence": intent.confidence},
                    )
                    return intent

        intent = UserIntent(
            pattern=utterance,
            keywords=keywords,
            workflow=workflow,
            action=action,
            confidence=self._settings.intent_initial_confidence,
            learned_from=[utterance],
            trigger_count=1,
        )
        self._intents[intent.id] = intent
        self.save()
        logger.info("Intent learned", extra={"intent_id": intent.id, "action": action})
        return intent

    def score(self, intent: UserIntent, tokens: Sequence[str]) -> float:
        denominator = max(len(tokens), len(intent.keywords))
        if denominator == 0:
            return 0.0
        known = set(intent.keywords)
        overlap = sum(1 for token in tokens if token in known)
        return (overlap / denominator) * intent.confidence

    def match(self, utterance: str) -> IntentMatch | None:
        tokens = tokenize(utterance)
        best: IntentMatch | None = None

        for intent in self._intents.values():
            score = self.score(intent, tokens)
            if score > self._settings.intent_match_threshold and (
                best is None or score > best.score
            ):
                best = IntentMatch(intent=intent, score=score)

        return best

    def bind(self, intent_id: str, workflow_id: str | None) -> UserIntent | None:
        intent = self._intents.get(intent_id)
        if intent is None:
            return None
        intent.workflow = workflow_id
        self.save()
        return intent

    def forget_workflow(self, workflow_id: str) -> None:
        """Unbind every intent pointing at a deleted workflow."""

        changed = False
        for intent in self._intents.values():
            if intent.workflow == workflow_id:
                intent.workflow = None
                changed = True
        if changed:
            self.save()

    def should_trigger(self, intent: UserIntent, now: datetime) -> bool:
        if not intent.workflow:
            return False
        if intent.last_triggered is not None:
            elapsed_ms = (now - intent.last_triggered).total_seconds() * 1000
            if elapsed_ms < self._settings.intent_cooldown_ms:
                return False
        return intent.confidence > self._settings.intent_fire_confidence

    async def proactive_check(self) -> list[str]:
        """Fire every eligible bound intent. Returns the fired intent ids.

        Each firing runs as its own task that outlives a stopped tick;
        `drain` waits for it.
        """

        memories: Sequence[Any] = []
        if self._memory is not None:
            try:
                memories = await resolve(self._memory.recall("", MEMORY_RECALL_LIMIT))
            except Exception:
                logger.exception("Memory recall failed")

        fired: list[str] = []
        for intent in list(self._intents.values()):
            if not self.should_trigger(intent, self._clock()):
                continue
            logger.info(
                "Proactive trigger",
                extra={"intent_id": intent.id, "pattern": intent.pattern},
            )
            task = asyncio.get_running_loop().create_task(
                self._fire(intent), name=f"proactive-{intent.id}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            if await asyncio.shield(task):
                fired.append(intent.id)

        if self._analyzer is not None:
            try:
                await resolve(self._analyzer.analyze(memories))
            except Exception:
                logger.exception("Proactive analysis failed")

        return fired

    async def _fire(self, intent: UserIntent) -> bool:
        assert intent.workflow is not None
        try:
            await self._dispatch(intent.workflow)
        except Exception as e:
            logger.error(
                "Proactive run failed",
                extra={"intent_id": intent.id, "workflow_id": intent.workflow, "error": str(e)},
            )
            return False
        intent.last_triggered = self._clock()
        intent.trigger_count += 1
        self.save()
        return True

    async def drain(self) -> None:
        """Wait for proactive runs that are still in flight."""

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def start(self) -> None:
        self.stop()
        self._handle = self._ticker.start(
            self._settings.proactive_period_ms, self.proactive_check, name="intent-proactive"
        )

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
