from __future__ import annotations

from dataclasses import dataclass

"""InputRecord model for the seat allocation import.

An InputRecord is one beneficiary/article request line extracted from a master
CSV row. The verbatim row travels next to it as a MasterRow so that columns the
application does not interpret are still exported unchanged.
"""

__all__ = [
    "InputRecord",
    "MasterRow",
    "NON_DISTRICT",
]

# 元CSVのヘッダ文字列 -> セル値 (加工なし)
MasterRow = dict[str, str]

NON_DISTRICT = "Non-District"


@dataclass(frozen=True)
class InputRecord:
    """Typed view of the seven required columns of a master CSV row."""
    application_number: str
    beneficiary_name: str
    requested_item: str
    quantity: int  # 非負整数 (parse 失敗時 0)
    beneficiary_type: str  # District / Public / Institutions / Others (free-form)
    item_type: str
    comments: str

    @property
    def district(self) -> str:
        """District bucket: the beneficiary name for District rows, else Non-District."""
        if self.beneficiary_type.lower() == "district":
            return self.beneficiary_name
        return NON_DISTRICT

    @property
    def is_blank(self) -> bool:
        """True for spreadsheet filler rows with no identifying data and no quantity."""
        return (
            not self.application_number
            and not self.beneficiary_name
            and not self.requested_item
            and self.quantity <= 0
        )
