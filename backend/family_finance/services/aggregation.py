from __future__ import annotations

from ..persistence import Repositories
from ..schemas import CategorySlice, DashboardResponse, DashboardStats, Expense, StatsResponse

CATEGORY_PALETTE = (
    "#22c55e",
    "#ef4444",
    "#f59e0b",
    "#3b82f6",
    "#8b5cf6",
    "#ec4899",
    "#14b8a6",
    "#6366f1",
)
RECENT_TRANSACTIONS_LIMIT = 5


def savings_rate(total: float, spent: float) -> float:
    if total <= 0:
        return 0.0
    return (total - spent) / total * 100


def build_category_data(expenses: list[Expense]) -> list[CategorySlice]:
    """Sum expense amounts per category, in first-seen order.

    A category keeps the color carried by its expenses (the last non-empty
    ``categoryColor`` wins); categories without one take the next palette color.
    """
    totals: dict[str, float] = {}
    colors: dict[str, str] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, 0.0) + expense.amount
        if expense.categoryColor:
            colors[expense.category] = expense.categoryColor

    slices: list[CategorySlice] = []
    palette_idx = 0
    for name, value in totals.items():
        color = colors.get(name)
        if not color:
            color = CATEGORY_PALETTE[palette_idx % len(CATEGORY_PALETTE)]
            palette_idx += 1
        slices.append(CategorySlice(name=name, value=value, color=color))
    return slices


def recent_transactions(expenses: list[Expense], limit: int = RECENT_TRANSACTIONS_LIMIT) -> list[Expense]:
    # Stable sort: equal dates keep store order.
    ordered = sorted(expenses, key=lambda e: (e.date, e.createdAt), reverse=True)
    return ordered[:limit]


def compute_stats(repos: Repositories) -> StatsResponse:
    with repos.store.view() as tx:
        expenses = repos.expenses.scan(tx)
        budgets = repos.budgets.scan(tx)
    total_spent = sum(e.amount for e in expenses)
    total_budget = sum(b.limit for b in budgets)
    return StatsResponse(
        totalSpent=total_spent,
        monthlyBudget=total_budget,
        transactionCount=len(expenses),
        savingsRate=savings_rate(total_budget, total_spent),
    )


def compute_dashboard(repos: Repositories) -> DashboardResponse:
    with repos.store.view() as tx:
        expenses = repos.expenses.scan(tx)
        budgets = repos.budgets.scan(tx)
        goals = repos.goals.scan(tx)
        bills = repos.bills.scan(tx)
        incomes = repos.income.scan(tx)

    total_spent = sum(e.amount for e in expenses)
    total_income = sum(i.amount for i in incomes)
    total_budget = sum(b.limit for b in budgets)
    stats = DashboardStats(
        totalSpent=total_spent,
        totalIncome=total_income,
        monthlyBudget=total_budget,
        transactionCount=len(expenses),
        savingsRate=savings_rate(total_income, total_spent),
        netBalance=total_income - total_spent,
    )
    return DashboardResponse(
        stats=stats,
        expenses=expenses,
        recentTransactions=recent_transactions(expenses),
        budgets=budgets,
        goals=goals,
        bills=bills,
        incomes=incomes,
        categoryData=build_category_data(expenses),
    )
