"""Tests for the prompt registry, chains and Handlebars rendering."""

import pytest

from symbeline_narrator.prompts import (
    CHAINS,
    FALLBACK_TEXT,
    SYSTEM_PROMPT,
    TEMPLATES,
    MissingVariableError,
    PromptError,
    PromptType,
    PromptVars,
    build_chain,
    build_chain_fallback,
    build_fallback,
    build_prompt,
    get_chain,
    get_template,
    render_prompt,
    validate_vars,
)


def _attack_vars(**overrides) -> PromptVars:
    values = {"attacker": "Aldric", "defender": "Morwen", "damage": 7, "remaining_authority": 43}
    values.update(overrides)
    return PromptVars(values)


# ── Registry ─────────────────────────────────────────────────


def test_every_type_has_a_template():
    assert set(TEMPLATES) == set(PromptType)
    for prompt_type, template in TEMPLATES.items():
        assert template.type is prompt_type
        for name in template.required_vars:
            assert "{" + name + "}" in template.text


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        TEMPLATES[PromptType.ATTACK] = None  # type: ignore[index]


def test_get_template():
    assert get_template(PromptType.TURN_SUMMARY).name == "Turn Summary"


def test_system_prompt_sets_the_tone():
    assert SYSTEM_PROMPT.startswith("You are the narrator of Symbeline Realms")
    assert "- Build tension as authority levels drop\n" in SYSTEM_PROMPT


# ── PromptVars ───────────────────────────────────────────────


def test_vars_last_write_wins_and_stringify():
    vars = PromptVars(turn=1)
    vars.add("turn", 2)
    assert vars.get("turn") == "2"
    assert len(vars) == 1
    assert "turn" in vars
    assert vars.get("missing") is None


# ── build_prompt ─────────────────────────────────────────────


def test_build_substitutes_every_placeholder():
    result = build_prompt(PromptType.ATTACK, _attack_vars())
    assert result == (
        "Aldric strikes at Morwen for 7 damage! "
        "Morwen now has 43 authority remaining."
    )


def test_repeated_placeholder_replaced_everywhere():
    result = build_prompt(PromptType.ATTACK, _attack_vars(defender="the Wilds"))
    assert result.count("the Wilds") == 2
    assert "{defender}" not in result


def test_extra_vars_ignored():
    result = build_prompt(PromptType.ATTACK, _attack_vars(unused="zzz"))
    assert "zzz" not in result


def test_missing_variable_reported():
    vars = PromptVars(attacker="Aldric", damage=3)
    assert validate_vars(PromptType.ATTACK, vars) == "defender"
    with pytest.raises(MissingVariableError) as exc:
        build_prompt(PromptType.ATTACK, vars)
    assert exc.value.variable == "defender"
    assert isinstance(exc.value, PromptError)


def test_validate_vars_ok():
    assert validate_vars(PromptType.ATTACK, _attack_vars()) is None


def test_world_state_template():
    vars = PromptVars(
        turn=4, player1_name="Aldric", player1_authority=40,
        player2_name="Morwen", player2_authority=35, phase="Main",
    )
    assert build_prompt(PromptType.WORLD_STATE, vars) == (
        "Turn 4 of the battle for Symbeline. Aldric commands 40 authority. "
        "Morwen commands 35 authority. The current phase is Main."
    )


# ── Chains ───────────────────────────────────────────────────


def test_chain_registry():
    assert get_chain("turn") == (
        PromptType.WORLD_STATE, PromptType.FORCE_DESCRIPTION, PromptType.TURN_SUMMARY,
    )
    assert get_chain("combat") == (PromptType.ATTACK, PromptType.EVENT_NARRATION)
    assert get_chain("nope") is None
    assert set(CHAINS) == {"turn", "card_play", "combat"}


def test_build_chain_in_order():
    vars = _attack_vars(event_type="attack on player", actor="Aldric", target="Morwen", effect="7 damage")
    prompts = build_chain("combat", vars)
    assert len(prompts) == 2
    assert prompts[0].startswith("Aldric strikes at Morwen")
    assert prompts[1].startswith("Narrate this event: attack on player.")


def test_build_chain_missing_variable():
    with pytest.raises(MissingVariableError):
        build_chain("combat", _attack_vars())


def test_build_unknown_chain():
    with pytest.raises(PromptError):
        build_chain("nope", PromptVars())


# ── Canned prose ─────────────────────────────────────────────


def test_every_type_has_canned_prose():
    assert set(FALLBACK_TEXT) == set(PromptType)
    for prompt_type in FALLBACK_TEXT:
        required = TEMPLATES[prompt_type].required_vars
        vars = PromptVars({name: "x" for name in required})
        assert "{" not in build_fallback(prompt_type, vars)


def test_canned_prose_for_attack():
    assert build_fallback(PromptType.ATTACK, _attack_vars()) == (
        "Aldric strikes Morwen for 7 damage, leaving 43 authority."
    )


def test_canned_prose_needs_the_same_variables():
    with pytest.raises(MissingVariableError):
        build_fallback(PromptType.ATTACK, PromptVars(attacker="Aldric"))


def test_chain_prose_has_no_instructions():
    vars = PromptVars(turn=3, player1_name="Aldric", player1_authority=40, player2_name="Morwen",
                      player2_authority=35, phase="main", player_name="Aldric", faction="High Kingdom",
                      bases_in_play=1, cards_in_hand=4, trade_made=6, combat_dealt=5, cards_played=3)
    text = build_chain_fallback("turn", vars)
    assert text.startswith("Turn 3 of the battle for Symbeline. Aldric holds 40 authority against Morwen's 35.")
    assert text.endswith("Aldric spends 6 trade and deals 5 damage across 3 cards.")
    for instruction in ("Describe", "Summarize", "Narrate"):
        assert instruction not in text
    with pytest.raises(PromptError):
        build_chain_fallback("nope", vars)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_triple_stash_skips_escaping():
    assert render_prompt("{{{name}}}", {"name": "Aldric's <host>"}) == "Aldric's <host>"


def test_render_numbered_helper():
    tpl = "{{#numbered items}}{{index}}. {{item}}\n{{/numbered}}"
    assert render_prompt(tpl, {"items": ["a", "b"]}) == "1. a\n2. b\n"


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})
