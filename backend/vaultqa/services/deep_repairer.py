"""
AI-Assisted Deep Repairer

Handles the defects rules cannot fix (generic rationales, clinical
inconsistencies, SBAR malformation, EHR desynchronisation) by sending the
item and its outstanding diagnostics to OpenAI chat completions, then:

1. Parsing the reply as a structured item (one retry on parse failure)
2. Validating it against the ItemDocument schema, with the id pinned
3. Running the deterministic repairer over it
4. Re-running QA and diffing diagnostic codes before/after

Failures never propagate: the caller gets the original item back with
success=False and an error string.
"""

import os
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import APIError
from pydantic import ValidationError

from vaultqa.schemas.item import ItemDocument
from vaultqa.services.credential_pool import CredentialPool
from vaultqa.services.deterministic_repairer import repair_item
from vaultqa.services.item_model import Diagnostic, ItemReport
from vaultqa.services.item_qa import run_item_qa
from vaultqa.services.task_runner import SupersedingRunner
from vaultqa.utils.openai_client import get_openai_client

logger = logging.getLogger(__name__)

DEEP_REPAIR_MODEL = os.getenv("DEEP_REPAIR_MODEL", "gpt-4o")
DEEP_REPAIR_TIMEOUT = float(os.getenv("DEEP_REPAIR_TIMEOUT", "30"))
DEEP_REPAIR_CONCURRENCY = int(os.getenv("DEEP_REPAIR_CONCURRENCY", "4"))
MAX_ATTEMPTS = 2

SYSTEM_PROMPT = (
    "You are a senior NCLEX item editor. You repair exam items so they are clinically "
    "accurate, internally consistent and complete. You always answer with a single JSON "
    "object and nothing else."
)


class ItemParseError(ValueError):
    """The service reply could not be turned into a valid item."""


@dataclass
class DeepRepairResult:
    item: Any
    changes: List[str]
    report: ItemReport
    success: bool
    error: Optional[str] = None


def build_prompt(item: Dict[str, Any], diagnostics: List[Diagnostic]) -> str:
    """Instruction, numbered outstanding diagnostics, then the item JSON."""
    if diagnostics:
        issues = "\n".join(
            f"{i}. [{d.severity.value}] {d.code} ({d.dimension.value}"
            f"{', ' + d.field if d.field else ''}): {d.message}"
            for i, d in enumerate(diagnostics, 1)
        )
    else:
        issues = "None reported. Tighten clinical accuracy and rationale depth."

    return f"""Repair the following NCLEX exam item.

OUTSTANDING DIAGNOSTICS:
{issues}

REQUIREMENTS:
- Keep the same "id" and "type"; keep option, blank and row ids stable
- Rationale "correct" and "incorrect" must be specific to this client, at least 20 words each
- Every value cited in the stem or rationale must appear in the chart tabs (itemContext)
- The SBAR note must be 120-160 words with military (HH:mm) timestamps
- Never recommend an action contraindicated by the client's allergies or isolation precautions
- Include rationale.clinicalPearls, rationale.questionTrap {{trap, howToOvercome}} and rationale.mnemonic {{title, expansion}}

ITEM JSON:
{json.dumps(item, indent=2, ensure_ascii=False, default=str)}

Return ONLY the corrected item as a JSON object."""


def parse_repaired_item(content: Optional[str], original_id: Any) -> Dict[str, Any]:
    """
    Parse a service reply into an item dict.

    Raises:
        ItemParseError: If the reply is empty, not JSON, or not a valid item
    """
    if not content or not content.strip():
        raise ItemParseError("Empty response from generative service")

    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]

    start, end = text.find("{"), text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ItemParseError("No JSON object found in response")

    try:
        parsed = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ItemParseError(f"JSON parse error: {e}") from e
    if not isinstance(parsed, dict):
        raise ItemParseError("Response JSON is not an object")

    parsed["id"] = original_id
    try:
        ItemDocument.model_validate(parsed)
    except ValidationError as e:
        raise ItemParseError(f"Item failed validation: {e.error_count()} error(s)") from e
    return parsed


def diff_diagnostics(before: ItemReport, after: ItemReport) -> List[str]:
    before_codes, after_codes = set(before.diagnostic_codes), set(after.diagnostic_codes)
    changes = [f"Resolved {code}" for code in sorted(before_codes - after_codes)]
    changes.extend(f"Introduced {code}" for code in sorted(after_codes - before_codes))
    if after.score != before.score:
        changes.append(f"Score {before.score:.2f} → {after.score:.2f}")
    return changes


class DeepRepairer:
    """One item at a time through the generative service."""

    def __init__(self, pool: CredentialPool, model: str = DEEP_REPAIR_MODEL, timeout: float = DEEP_REPAIR_TIMEOUT):
        self.pool = pool
        self.model = model
        self.timeout = timeout

    async def _complete(self, prompt: str) -> Optional[str]:
        client = get_openai_client(self.pool.next_key())

        def _sync_call():
            return client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=4000,
                response_format={"type": "json_object"},
            )

        response = await asyncio.wait_for(asyncio.to_thread(_sync_call), timeout=self.timeout)
        try:
            return response.choices[0].message.content
        except (AttributeError, IndexError, KeyError, TypeError):
            raise ItemParseError("Malformed response: no message content")

    async def repair(self, item: Dict[str, Any], report: Optional[ItemReport] = None) -> DeepRepairResult:
        """Repair one item. Never raises; failures come back as success=False."""
        before = report or run_item_qa(item)
        prompt = build_prompt(item, before.diagnostics)
        item_id = item.get("id") if isinstance(item, dict) else None

        error = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                content = await self._complete(prompt)
                candidate = parse_repaired_item(content, item_id)
            except ItemParseError as e:
                error = str(e)
                logger.warning(f"Deep repair of {item_id}: unusable response (attempt {attempt}/{MAX_ATTEMPTS}): {e}")
                continue
            except asyncio.TimeoutError:
                error = f"Generative service timed out after {self.timeout:.0f}s"
                logger.error(f"Deep repair of {item_id}: {error}")
                break
            except (APIError, ValueError) as e:
                error = f"Generative service error: {e}"
                logger.error(f"Deep repair of {item_id}: {error}")
                break
            except Exception as e:
                error = f"Unexpected deep repair error: {e}"
                logger.exception(f"Deep repair of {item_id}: {error}")
                break

            fixed = repair_item(candidate)
            changes = diff_diagnostics(before, fixed.report) + fixed.changes
            logger.info(
                f"Deep repair of {item_id}: score {before.score:.2f} → {fixed.report.score:.2f} "
                f"({len(changes)} changes)"
            )
            return DeepRepairResult(item=fixed.item, changes=changes, report=fixed.report, success=True)

        return DeepRepairResult(item=item, changes=[], report=before, success=False, error=error)


@dataclass
class DeepRepairBatch:
    results: List[DeepRepairResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


class DeepRepairService:
    """
    Bulk deep repair with bounded concurrency.

    A new run supersedes an outstanding one; the superseded caller gets None.
    """

    def __init__(self, repairer: DeepRepairer, concurrency: int = DEEP_REPAIR_CONCURRENCY):
        self.repairer = repairer
        self.concurrency = max(1, concurrency)
        self._runner = SupersedingRunner("deep repair")

    async def run(self, items: List[Dict[str, Any]]) -> Optional[DeepRepairBatch]:
        snapshot = list(items)
        return await self._runner.run(lambda generation: self._run(snapshot, generation))

    async def _run(self, items: List[Dict[str, Any]], generation: int) -> DeepRepairBatch:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(item: Dict[str, Any]) -> DeepRepairResult:
            async with semaphore:
                return await self.repairer.repair(item)

        logger.info(f"Deep repair run {generation}: {len(items)} items, concurrency {self.concurrency}")
        results = await asyncio.gather(*(bounded(item) for item in items))
        batch = DeepRepairBatch(results=list(results))
        logger.info(f"Deep repair run {generation}: {batch.succeeded} repaired, {batch.failed} failed")
        return batch
