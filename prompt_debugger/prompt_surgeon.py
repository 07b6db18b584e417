# prompt_debugger/prompt_surgeon.py

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from diff_match_patch import diff_match_patch

from prompt_debugger.base_utils import logger
from prompt_debugger.entities import Modification
from prompt_debugger.errors import PatchApplicationError

APPEND_SEPARATOR = "\n\n"


@dataclass
class PatchOutcome:
    text: Optional[str]
    failed_index: Optional[int] = None
    reason: Optional[str] = None
    applied: int = 0

    @property
    def ok(self) -> bool:
        return self.failed_index is None


class PromptSurgeon:
    """
    Applies text modifications to a prompt with fuzzy diff/patch matching,
    left to right, each one against the output of the previous.

    `original_text` is located exactly when possible and otherwise by
    diff-match-patch's bitap search, so small drift from earlier edits in the
    same batch is tolerated. An empty `original_text` appends the replacement.
    """

    def __init__(self, *, match_threshold: float = 0.5, delete_threshold: float = 0.5):
        self.match_threshold = match_threshold
        self.delete_threshold = delete_threshold

    def _dmp(self, text_len: int) -> diff_match_patch:
        dmp = diff_match_patch()
        dmp.Diff_Timeout = 1.0
        dmp.Match_Threshold = self.match_threshold
        dmp.Patch_DeleteThreshold = self.delete_threshold
        # position in the prompt carries no signal, only similarity does
        dmp.Match_Distance = max(1000, text_len * 10)
        return dmp

    def _locate(self, dmp: diff_match_patch, text: str, original: str) -> int:
        idx = text.find(original)
        if idx != -1:
            return idx
        return dmp.match_main(text, original[:dmp.Match_MaxBits], 0)

    def _apply_one(self, text: str, mod: Modification) -> Tuple[Optional[str], Optional[str]]:
        original = mod.original_text
        replacement = mod.replacement_text

        if not original.strip():
            if not replacement.strip():
                return None, "modification has neither original nor replacement text"
            if not text:
                return replacement, None
            sep = "" if text.endswith(APPEND_SEPARATOR) else ("\n" if text.endswith("\n") else APPEND_SEPARATOR)
            return text + sep + replacement, None

        exact = text.find(original)
        if exact != -1:
            return text[:exact] + replacement + text[exact + len(original):], None

        dmp = self._dmp(len(text))
        anchor = self._locate(dmp, text, original)
        if anchor == -1:
            return None, "original text not found in the current prompt"

        patches = dmp.patch_make(original, replacement)
        if not patches:
            return text, None
        for p in patches:
            p.start1 += anchor
            p.start2 += anchor

        new_text, results = dmp.patch_apply(patches, text)
        if not all(results):
            failed = sum(1 for r in results if not r)
            return None, f"{failed} of {len(results)} hunk(s) could not be matched"
        return new_text, None

    def apply_all(self, text: str, modifications: Sequence[Modification]) -> PatchOutcome:
        """
        Fallible fold: stops at the first modification that cannot be applied
        and reports its index. The input text is never modified.
        """
        acc = text
        for i, mod in enumerate(modifications):
            new_text, reason = self._apply_one(acc, mod)
            if new_text is None:
                logger.warning(f"Patch #{i} failed ({reason}); locator={mod.locator!r}")
                return PatchOutcome(text=None, failed_index=i, reason=reason, applied=i)
            acc = new_text
        return PatchOutcome(text=acc, applied=len(modifications))

    def apply(self, text: str, modifications: Sequence[Modification]) -> str:
        outcome = self.apply_all(text, modifications)
        if not outcome.ok:
            raise PatchApplicationError(outcome.failed_index, outcome.reason)
        return outcome.text

    def apply_skipping(self, text: str, modifications: Sequence[Modification]) -> Tuple[str, List[PatchApplicationError]]:
        """Applies what it can; failed modifications are returned, not raised."""
        acc = text
        skipped: List[PatchApplicationError] = []
        for i, mod in enumerate(modifications):
            new_text, reason = self._apply_one(acc, mod)
            if new_text is None:
                logger.warning(f"Skipping patch #{i} ({reason}); locator={mod.locator!r}")
                skipped.append(PatchApplicationError(i, reason))
                continue
            acc = new_text
        return acc, skipped
