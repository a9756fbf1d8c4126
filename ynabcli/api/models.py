"""
Typed views over YNAB API payloads.

Amounts are integer milliunits (1000 = one currency unit). Each model
keeps only the fields the CLI displays or sends back; ``from_dict``
tolerates missing optional keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CurrencyFormat:
    iso_code: str
    currency_symbol: str
    decimal_digits: int = 2
    symbol_first: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CurrencyFormat:
        return cls(
            iso_code=data.get("iso_code", ""),
            currency_symbol=data.get("currency_symbol", ""),
            decimal_digits=int(data.get("decimal_digits", 2)),
            symbol_first=bool(data.get("symbol_first", True)),
        )


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    type: str
    on_budget: bool = True
    closed: bool = False
    balance: int = 0
    cleared_balance: int = 0
    uncleared_balance: int = 0
    note: str | None = None
    deleted: bool = False

    @property
    def is_active(self) -> bool:
        return not self.closed and not self.deleted

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type", ""),
            on_budget=bool(data.get("on_budget", True)),
            closed=bool(data.get("closed", False)),
            balance=int(data.get("balance", 0)),
            cleared_balance=int(data.get("cleared_balance", 0)),
            uncleared_balance=int(data.get("uncleared_balance", 0)),
            note=data.get("note"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class Budget:
    id: str
    name: str
    last_modified_on: str | None = None
    first_month: str | None = None
    last_month: str | None = None
    currency_format: CurrencyFormat | None = None
    accounts: list[Account] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Budget:
        currency = data.get("currency_format")
        accounts = data.get("accounts")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            last_modified_on=data.get("last_modified_on"),
            first_month=data.get("first_month"),
            last_month=data.get("last_month"),
            currency_format=CurrencyFormat.from_dict(currency) if isinstance(currency, dict) else None,
            accounts=[Account.from_dict(item) for item in accounts] if isinstance(accounts, list) else None,
        )


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    category_group_id: str | None = None
    hidden: bool = False
    budgeted: int = 0
    activity: int = 0
    balance: int = 0
    goal_type: str | None = None
    goal_target: int | None = None
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Category:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            category_group_id=data.get("category_group_id"),
            hidden=bool(data.get("hidden", False)),
            budgeted=int(data.get("budgeted", 0)),
            activity=int(data.get("activity", 0)),
            balance=int(data.get("balance", 0)),
            goal_type=data.get("goal_type"),
            goal_target=data.get("goal_target"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class CategoryGroup:
    id: str
    name: str
    hidden: bool = False
    deleted: bool = False
    categories: list[Category] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CategoryGroup:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            hidden=bool(data.get("hidden", False)),
            deleted=bool(data.get("deleted", False)),
            categories=[Category.from_dict(item) for item in data.get("categories") or []],
        )


@dataclass(frozen=True)
class SubTransaction:
    id: str
    amount: int
    memo: str | None = None
    payee_name: str | None = None
    category_id: str | None = None
    category_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubTransaction:
        return cls(
            id=data["id"],
            amount=int(data.get("amount", 0)),
            memo=data.get("memo"),
            payee_name=data.get("payee_name"),
            category_id=data.get("category_id"),
            category_name=data.get("category_name"),
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    date: str
    amount: int
    account_id: str
    cleared: str = "uncleared"
    approved: bool = False
    memo: str | None = None
    account_name: str | None = None
    payee_id: str | None = None
    payee_name: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    flag_color: str | None = None
    deleted: bool = False
    subtransactions: list[SubTransaction] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        return cls(
            id=data["id"],
            date=data.get("date", ""),
            amount=int(data.get("amount", 0)),
            account_id=data.get("account_id", ""),
            cleared=data.get("cleared") or "uncleared",
            approved=bool(data.get("approved", False)),
            memo=data.get("memo"),
            account_name=data.get("account_name"),
            payee_id=data.get("payee_id"),
            payee_name=data.get("payee_name"),
            category_id=data.get("category_id"),
            category_name=data.get("category_name"),
            flag_color=data.get("flag_color"),
            deleted=bool(data.get("deleted", False)),
            subtransactions=[SubTransaction.from_dict(item) for item in data.get("subtransactions") or []],
        )


@dataclass(frozen=True)
class ScheduledTransaction:
    id: str
    date_next: str
    frequency: str
    amount: int
    account_id: str
    payee_name: str | None = None
    category_name: str | None = None
    memo: str | None = None
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduledTransaction:
        return cls(
            id=data["id"],
            date_next=data.get("date_next", ""),
            frequency=data.get("frequency", ""),
            amount=int(data.get("amount", 0)),
            account_id=data.get("account_id", ""),
            payee_name=data.get("payee_name"),
            category_name=data.get("category_name"),
            memo=data.get("memo"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class Payee:
    id: str
    name: str
    transfer_account_id: str | None = None
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Payee:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            transfer_account_id=data.get("transfer_account_id"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True)
class Month:
    month: str
    income: int = 0
    budgeted: int = 0
    activity: int = 0
    to_be_budgeted: int = 0
    age_of_money: int | None = None
    note: str | None = None
    deleted: bool = False
    categories: list[Category] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Month:
        return cls(
            month=data["month"],
            income=int(data.get("income", 0)),
            budgeted=int(data.get("budgeted", 0)),
            activity=int(data.get("activity", 0)),
            to_be_budgeted=int(data.get("to_be_budgeted", 0)),
            age_of_money=data.get("age_of_money"),
            note=data.get("note"),
            deleted=bool(data.get("deleted", False)),
            categories=[Category.from_dict(item) for item in data.get("categories") or []],
        )


@dataclass(frozen=True)
class BudgetDetail:
    budget: Budget
    server_knowledge: int
    accounts: list[Account] = field(default_factory=list)
    category_groups: list[CategoryGroup] = field(default_factory=list)
    payees: list[Payee] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)


@dataclass
class TransactionRequest:
    account_id: str
    date: str
    amount: int
    budget_id: str | None = None
    payee_name: str | None = None
    category_id: str | None = None
    memo: str | None = None
    cleared: str = ""
    approved: bool = True

    def validate(self) -> None:
        if not self.account_id:
            raise ValueError("account_id is required")
        if not self.date:
            raise ValueError("date is required")
        if not self.cleared:
            self.cleared = "uncleared"

    def to_payload(self) -> dict[str, Any]:
        txn: dict[str, Any] = {
            "account_id": self.account_id,
            "date": self.date,
            "amount": self.amount,
            "cleared": self.cleared,
            "approved": self.approved,
        }
        if self.payee_name:
            txn["payee_name"] = self.payee_name
        if self.category_id:
            txn["category_id"] = self.category_id
        if self.memo:
            txn["memo"] = self.memo
        return txn
