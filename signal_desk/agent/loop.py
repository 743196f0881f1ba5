"""Selection agent: a bounded, tool-augmented conversation with the LLM.

Each round sends the whole conversation, parses exactly one
{"tool", "args"} call from the reply, runs it, and feeds the result
back. The only normal exit is a valid submit_selections call. When the
round budget runs out the model gets one forced-finalization turn; if
that fails too, the run yields None ("no briefing today").
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from signal_desk.agent.models import (
    AgentScoringConfig,
    CandidateSignal,
    SelectionResult,
    SignalSelection,
    ToolCallLogEntry,
    ToolName,
)
from signal_desk.agent.tools import ToolExecutor
from signal_desk.graph.store import GraphStore
from signal_desk.llm.client import ChatResponse, LLMError
from signal_desk.llm.loader import load_prompt
from signal_desk.llm.parsing import parse_selections, parse_tool_call

logger = logging.getLogger(__name__)

RESULT_SUMMARY_CHARS = 500

FINALIZE_NUDGE = "Please finalize your selections by calling the submit_selections tool."
MALFORMED_SUBMIT = (
    "Your submit_selections call was malformed. "
    "Please try again with the correct format."
)
FORCE_FINALIZE = (
    "You've used all your tool rounds. You MUST now call submit_selections with your "
    "top {target} picks based on what you've learned. Respond with ONLY the JSON tool "
    "call, no text."
)


@dataclass
class _RunState:
    messages: list[dict]
    prompt_tokens: int = 0
    completion_tokens: int = 0
    model_used: str = ""
    tool_log: list[ToolCallLogEntry] = field(default_factory=list)
    assistant_turns: list[str] = field(default_factory=list)


def _listing(values: list[str], sep: str = ", ", empty: str = "not specified") -> str:
    return sep.join(values) if values else empty


def build_system_prompt(user: dict, profile: dict, candidate_count: int, target_count: int) -> str:
    rapid_fire = [r for r in profile.get("rapid_fire") or [] if isinstance(r, dict) and r.get("topic")]
    rapid_fire_block = ""
    if rapid_fire:
        rapid_fire_block = "- Quick classifications:\n" + "\n".join(
            f'  "{r["topic"]}" ({r.get("context", "")}): {r.get("response", "")}' for r in rapid_fire
        )

    return load_prompt("selection_agent").render(
        target_count=target_count,
        candidate_count=candidate_count,
        name=user.get("name") or "Unknown",
        title=user.get("title") or "Professional",
        company=user.get("company") or "their company",
        topics=_listing(profile.get("topics", [])),
        initiatives=_listing(profile.get("initiatives", []), "; ", "none specified"),
        concerns=_listing(profile.get("concerns", []), "; ", "none specified"),
        weak_areas=_listing(profile.get("weak_areas", [])),
        expert_areas=_listing(profile.get("expert_areas", [])),
        knowledge_gaps=_listing(profile.get("knowledge_gaps", [])),
        rapid_fire=rapid_fire_block,
    )


def build_candidate_list(pool: list[CandidateSignal]) -> str:
    lines = []
    for i, s in enumerate(pool):
        label = f" ({s.source_label})" if s.source_label else ""
        lines.append(f"[{i}] {s.title}\n    {s.summary}{label}")
    return "\n\n".join(lines)


class SelectionAgent:
    """Runs one user's selection conversation."""

    def __init__(self, store: GraphStore, llm, executor: ToolExecutor | None = None):
        self.store = store
        self.llm = llm
        self.executor = executor or ToolExecutor(store, llm)

    def run(
        self,
        user_id: str,
        candidates: list[CandidateSignal],
        config: AgentScoringConfig | None = None,
    ) -> SelectionResult | None:
        config = config or AgentScoringConfig()
        user = self.store.get_user(user_id)
        profile = self.store.get_profile(user_id)
        if not user or not profile:
            logger.warning("User or profile missing for %s, skipping selection", user_id)
            return None

        pool = list(candidates[:config.candidate_pool_size])
        if not pool:
            logger.info("No candidates for %s, nothing to select", user_id)
            return None

        state = _RunState(messages=[
            {"role": "system", "content": build_system_prompt(
                user, profile, len(pool), config.target_selections)},
            {"role": "user", "content": (
                f"Here are today's candidate signals. Select the top {config.target_selections}.\n\n"
                + build_candidate_list(pool)
            )},
        ])
        logger.info(
            "Selection run for %s: %d candidates, target %d, %d rounds",
            user_id, len(pool), config.target_selections, config.max_tool_rounds,
        )

        for round_num in range(1, config.max_tool_rounds + 1):
            response = self._call_model(state, config, user_id, round_num)
            if response is None:
                return None

            call = parse_tool_call(response.content)
            if call is None:
                logger.debug("Round %d for %s: free text, nudging to finalize", round_num, user_id)
                state.messages.append({"role": "user", "content": FINALIZE_NUDGE})
                continue

            if call["tool"] == ToolName.SUBMIT_SELECTIONS.value:
                selections = parse_selections(call["args"].get("selections"))
                if selections:
                    return self._finish(user_id, state, selections, round_num)
                logger.warning("Round %d for %s: malformed submit_selections", round_num, user_id)
                state.messages.append({"role": "user", "content": MALFORMED_SUBMIT})
                continue

            result = self.executor.execute(call["tool"], call["args"], user_id, pool)
            result_json = json.dumps(result, indent=2, default=str)
            state.tool_log.append(ToolCallLogEntry(
                tool=call["tool"],
                args=call["args"],
                result_summary=json.dumps(result, default=str)[:RESULT_SUMMARY_CHARS],
            ))
            logger.debug("Round %d for %s: ran %s", round_num, user_id, call["tool"])
            state.messages.append({
                "role": "user",
                "content": f"Tool result ({call['tool']}):\n{result_json}",
            })

        # Round budget spent: one last chance, submit only
        state.messages.append({
            "role": "user",
            "content": FORCE_FINALIZE.format(target=config.target_selections),
        })
        response = self._call_model(state, config, user_id, config.max_tool_rounds + 1)
        if response is None:
            return None

        call = parse_tool_call(response.content)
        if call and call["tool"] == ToolName.SUBMIT_SELECTIONS.value:
            selections = parse_selections(call["args"].get("selections"))
            if selections:
                return self._finish(user_id, state, selections, config.max_tool_rounds + 1)

        logger.warning(
            "Selection run for %s produced no valid submission after %d rounds",
            user_id, config.max_tool_rounds + 1,
        )
        return None

    def _call_model(
        self,
        state: _RunState,
        config: AgentScoringConfig,
        user_id: str,
        round_num: int,
    ) -> ChatResponse | None:
        """One model call. Transport failures end the run (returns None)."""
        try:
            response = self.llm.chat(
                state.messages,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )
        except LLMError as exc:
            logger.error("LLM call failed for %s in round %d: %s", user_id, round_num, exc)
            return None

        state.prompt_tokens += response.prompt_tokens
        state.completion_tokens += response.completion_tokens
        state.model_used = response.model or state.model_used
        state.assistant_turns.append(response.content)
        state.messages.append({"role": "assistant", "content": response.content})
        return response

    def _finish(
        self,
        user_id: str,
        state: _RunState,
        selections: list[SignalSelection],
        rounds: int,
    ) -> SelectionResult:
        tools_used = [entry.tool for entry in state.tool_log]
        annotated = [s.model_copy(update={"tools_used": list(tools_used)}) for s in selections]
        logger.info(
            "Selection run for %s finished in %d rounds: %d selections, %d+%d tokens",
            user_id, rounds, len(annotated), state.prompt_tokens, state.completion_tokens,
        )
        return SelectionResult(
            user_id=user_id,
            selections=annotated,
            tool_call_log=list(state.tool_log),
            model_used=state.model_used or getattr(self.llm, "model", ""),
            prompt_tokens=state.prompt_tokens,
            completion_tokens=state.completion_tokens,
            reasoning="\n\n".join(state.assistant_turns),
        )
