from __future__ import annotations

import json
import threading
from typing import Any
from urllib.parse import quote, urlencode

from ynabcli.api.errors import InvalidResponseError
from ynabcli.api.executor import RequestExecutor
from ynabcli.api.models import (
    Account,
    Budget,
    BudgetDetail,
    Category,
    CategoryGroup,
    Month,
    Payee,
    ScheduledTransaction,
    Transaction,
    TransactionRequest,
)
from ynabcli.money import month_start


class YnabClient:
    """Typed YNAB operations; every HTTP exchange goes through ``RequestExecutor``."""

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        default_budget_id: str | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self._executor = executor
        self._default_budget_id = default_budget_id or None
        self._cancel = cancel

    @property
    def executor(self) -> RequestExecutor:
        return self._executor

    def close(self) -> None:
        self._executor.close()

    def set_default_budget_id(self, budget_id: str) -> None:
        self._default_budget_id = budget_id

    def get_default_budget_id(self) -> str:
        """Configured budget id, else the first budget on the account."""
        if self._default_budget_id:
            return self._default_budget_id
        budgets = self.get_budgets()
        if not budgets:
            raise InvalidResponseError("no budgets found for this account")
        self._default_budget_id = budgets[0].id
        return self._default_budget_id

    def get_budgets(self) -> list[Budget]:
        data = self._data("GET", "/budgets")
        return [Budget.from_dict(item) for item in self._require_list(data, "budgets")]

    def get_budget(self, budget_id: str, last_knowledge: int = 0) -> BudgetDetail:
        params = {"last_knowledge_of_server": last_knowledge} if last_knowledge > 0 else None
        data = self._data("GET", self._path("budgets", budget_id, params=params))
        budget = data.get("budget")
        if not isinstance(budget, dict):
            raise InvalidResponseError("budget response must contain a budget object")
        return BudgetDetail(
            budget=Budget.from_dict(budget),
            server_knowledge=int(data.get("server_knowledge", 0)),
            accounts=[Account.from_dict(item) for item in budget.get("accounts") or []],
            category_groups=[CategoryGroup.from_dict(item) for item in budget.get("category_groups") or []],
            payees=[Payee.from_dict(item) for item in budget.get("payees") or []],
            transactions=[Transaction.from_dict(item) for item in budget.get("transactions") or []],
        )

    def get_categories(self, budget_id: str | None = None) -> list[CategoryGroup]:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "categories"))
        return [CategoryGroup.from_dict(item) for item in self._require_list(data, "category_groups")]

    def update_category_budget(
        self,
        category_id: str,
        budgeted: int,
        month: str | None = None,
        budget_id: str | None = None,
    ) -> Category:
        if not category_id:
            raise ValueError("category_id is required")
        budget_id = budget_id or self.get_default_budget_id()
        month = month_start(month)
        path = self._path("budgets", budget_id, "months", month, "categories", category_id)
        data = self._data("PATCH", path, {"category": {"budgeted": budgeted}})
        return Category.from_dict(self._require_dict(data, "category"))

    def get_accounts(self, budget_id: str | None = None) -> list[Account]:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "accounts"))
        return [Account.from_dict(item) for item in self._require_list(data, "accounts")]

    def create_account(
        self,
        name: str,
        account_type: str,
        balance: int = 0,
        budget_id: str | None = None,
    ) -> Account:
        budget_id = budget_id or self.get_default_budget_id()
        body = {"account": {"name": name, "type": account_type, "balance": balance}}
        data = self._data("POST", self._path("budgets", budget_id, "accounts"), body)
        return Account.from_dict(self._require_dict(data, "account"))

    def create_transaction(self, request: TransactionRequest) -> Transaction:
        request.validate()
        budget_id = request.budget_id or self.get_default_budget_id()
        body = {"transaction": request.to_payload()}
        data = self._data("POST", self._path("budgets", budget_id, "transactions"), body)
        return Transaction.from_dict(self._require_dict(data, "transaction"))

    def get_transactions(self, budget_id: str | None = None, since_date: str | None = None) -> list[Transaction]:
        budget_id = budget_id or self.get_default_budget_id()
        path = self._path("budgets", budget_id, "transactions", params=self._since(since_date))
        return self._transactions(path)

    def get_transactions_by_account(
        self,
        account_id: str,
        budget_id: str | None = None,
        since_date: str | None = None,
    ) -> list[Transaction]:
        budget_id = budget_id or self.get_default_budget_id()
        path = self._path("budgets", budget_id, "accounts", account_id, "transactions", params=self._since(since_date))
        return self._transactions(path)

    def get_transactions_by_category(
        self,
        category_id: str,
        budget_id: str | None = None,
        since_date: str | None = None,
    ) -> list[Transaction]:
        budget_id = budget_id or self.get_default_budget_id()
        path = self._path(
            "budgets", budget_id, "categories", category_id, "transactions", params=self._since(since_date)
        )
        return self._transactions(path)

    def get_transaction(self, transaction_id: str, budget_id: str | None = None) -> Transaction:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "transactions", transaction_id))
        return Transaction.from_dict(self._require_dict(data, "transaction"))

    def update_transaction(
        self,
        transaction_id: str,
        fields: dict[str, Any],
        budget_id: str | None = None,
    ) -> Transaction:
        if not fields:
            raise ValueError("at least one field to update is required")
        budget_id = budget_id or self.get_default_budget_id()
        path = self._path("budgets", budget_id, "transactions", transaction_id)
        data = self._data("PUT", path, {"transaction": fields})
        return Transaction.from_dict(self._require_dict(data, "transaction"))

    def delete_transaction(self, transaction_id: str, budget_id: str | None = None) -> Transaction:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("DELETE", self._path("budgets", budget_id, "transactions", transaction_id))
        return Transaction.from_dict(self._require_dict(data, "transaction"))

    def get_payees(self, budget_id: str | None = None) -> list[Payee]:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "payees"))
        return [Payee.from_dict(item) for item in self._require_list(data, "payees")]

    def get_months(self, budget_id: str | None = None) -> list[Month]:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "months"))
        return [Month.from_dict(item) for item in self._require_list(data, "months")]

    def get_month(self, month: str, budget_id: str | None = None) -> Month:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "months", month))
        return Month.from_dict(self._require_dict(data, "month"))

    def get_scheduled_transactions(self, budget_id: str | None = None) -> list[ScheduledTransaction]:
        budget_id = budget_id or self.get_default_budget_id()
        data = self._data("GET", self._path("budgets", budget_id, "scheduled_transactions"))
        return [ScheduledTransaction.from_dict(item) for item in self._require_list(data, "scheduled_transactions")]

    def _transactions(self, path: str) -> list[Transaction]:
        data = self._data("GET", path)
        return [Transaction.from_dict(item) for item in self._require_list(data, "transactions")]

    def _data(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        encoded = json.dumps(body).encode("utf-8") if body is not None else None
        raw = self._executor.execute(method, path, encoded, cancel=self._cancel)
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidResponseError(f"{method} {path} returned invalid JSON") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise InvalidResponseError(f"{method} {path} response must wrap an object under 'data'")
        return data

    @staticmethod
    def _path(*segments: str, params: dict[str, Any] | None = None) -> str:
        path = "/" + "/".join(quote(str(segment), safe="") for segment in segments)
        if params:
            path += "?" + urlencode(params)
        return path

    @staticmethod
    def _since(since_date: str | None) -> dict[str, str] | None:
        return {"since_date": since_date} if since_date else None

    @staticmethod
    def _require_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
        value = data.get(key)
        if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
            raise InvalidResponseError(f"'{key}' must be a list of objects")
        return value

    @staticmethod
    def _require_dict(data: dict[str, Any], key: str) -> dict[str, Any]:
        value = data.get(key)
        if not isinstance(value, dict):
            raise InvalidResponseError(f"'{key}' must be an object")
        return value
