from collections.abc import Callable

import pytest

from symbeline_narrator.llm import LLMMessage, LLMResponse
from symbeline_narrator.models import (
    CardInstance,
    CardKind,
    CardType,
    Faction,
    Game,
    GamePhase,
    Player,
    TradeRow,
)


class StubLLM:
    """Scripted LLM: returns queued responses in order and records every call.

    Queue strings for successes or LLMResponse objects for anything else.
    When the queue runs dry the `default` response is returned.
    """

    def __init__(self, *responses: str | LLMResponse, default: str = "The battle rages on.") -> None:
        self._queue: list[str | LLMResponse] = list(responses)
        self._default = default
        self.calls: list[list[LLMMessage]] = []

    @property
    def user_prompts(self) -> list[str]:
        return [m.content for call in self.calls for m in call if m.role == "user"]

    async def request(self, system_prompt: str | None, user_prompt: str) -> LLMResponse:
        messages = []
        if system_prompt is not None:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=user_prompt))
        return await self.request_messages(messages)

    async def request_messages(self, messages: list[LLMMessage]) -> LLMResponse:
        self.calls.append(messages)
        item = self._queue.pop(0) if self._queue else self._default
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse.ok(item, tokens_used=len(item.split()))


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def make_card() -> Callable[..., CardInstance]:
    def _make(name: str = "Royal Knight", faction: Faction = Faction.KINGDOM, cost: int = 4,
              kind: CardKind = CardKind.SHIP, defense: int = 0, card_id: str | None = None) -> CardInstance:
        card_type = CardType(
            id=card_id or name.lower().replace(" ", "_"),
            name=name, cost=cost, faction=faction, kind=kind, defense=defense,
        )
        return CardInstance(type=card_type, instance_id=f"{card_type.id}-1")
    return _make


@pytest.fixture
def make_game() -> Callable[..., Game]:
    def _make(auth1: int = 50, auth2: int = 50, turn: int = 1,
              names: tuple[str, str] = ("Aldric", "Morwen"),
              trade_row: TradeRow | None = None) -> Game:
        return Game(
            players=[
                Player(id=0, name=names[0], authority=auth1),
                Player(id=1, name=names[1], authority=auth2),
            ],
            turn_number=turn,
            phase=GamePhase.MAIN,
            trade_row=trade_row,
        )
    return _make


@pytest.fixture
def game(make_game) -> Game:
    return make_game()
