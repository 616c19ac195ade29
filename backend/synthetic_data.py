"""
Module: synthetic_data.py
Description: Synthetic ledger generator for demos and local development.

Generates about 14 months of expense activity for a small team with:
    - Steady weekday spend per user on expense accounts
    - A gentle upward trend in monthly expense (so the forecast slopes)
    - Revenue credits that the fraud check must ignore
    - A handful of injected spike days far outside each user's baseline

Author: Spend Sentinel Team

Usage:
    python synthetic_data.py --seed 42 --run-detection
"""

import argparse
import random
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session as DBSession

from models import Account, Transaction, User, DEBIT


def _add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


class SyntheticLedgerGenerator:
    """
    Reproducible ledger data for a four-person finance team.

    Each user has a typical daily budget; weekday spend is drawn around it
    and a few days per user are replaced by spikes several times larger.
    """

    USERS = [
        {'name': 'Alice Admin', 'email': 'alice@example.com', 'role': 'Admin', 'daily_budget': 180},
        {'name': 'Mark Manager', 'email': 'mark@example.com', 'role': 'Manager', 'daily_budget': 140},
        {'name': 'Erin Employee', 'email': 'erin@example.com', 'role': 'Employee', 'daily_budget': 90},
        {'name': 'Sam Sales', 'email': 'sam@example.com', 'role': 'Employee', 'daily_budget': 120},
    ]

    MERCHANTS = {
        'Office Supplies': ['STAPLES', 'OFFICE DEPOT', 'AMAZON BUSINESS'],
        'Travel': ['UNITED AIRLINES', 'UBER', 'MARRIOTT'],
        'Meals & Entertainment': ['CHIPOTLE', 'STARBUCKS', 'CLIENT DINNER'],
        'Software Subscriptions': ['GITHUB', 'SLACK', 'FIGMA'],
        'Utilities': ['CITY ELECTRIC', 'COMCAST BUSINESS'],
    }

    SPIKES_PER_USER = 1
    SPIKE_MULTIPLIER = (12, 20)
    MONTHLY_GROWTH = 0.02

    def __init__(self, seed: int = 42, as_of: Optional[date] = None, months: int = 14):
        """
        Args:
            seed: Random seed for reproducibility.
            as_of: Data ends the day before this date (default: today).
            months: Number of whole months of history before as_of's month.
        """
        self.rng = random.Random(seed)
        self.as_of = as_of or date.today()
        self.end_date = self.as_of - timedelta(days=1)
        self.start_date = _add_months(self.as_of.replace(day=1), -months)

    def generate(self) -> List[Dict]:
        """
        Build transaction dicts keyed by user email and account name.

        Returns:
            List of dicts with user_email, account, trans_type, amount
            (Decimal), date (datetime) and description.
        """
        transactions = []
        weekdays = self._weekdays()

        for user in self.USERS:
            spike_days = set(self.rng.sample(weekdays, self.SPIKES_PER_USER))
            for day in weekdays:
                if day in spike_days:
                    transactions.append(self._spike(user, day))
                    continue
                transactions.extend(self._regular_day(user, day))

            # Monthly revenue credit, ignored by the fraud check
            month = self.start_date
            while month <= self.end_date:
                transactions.append({
                    'user_email': user['email'],
                    'account': 'Sales Revenue',
                    'trans_type': 'Credit',
                    'amount': Decimal('5000.00'),
                    'date': datetime.combine(month, time(9, 0)),
                    'description': 'MONTHLY BOOKINGS',
                })
                month = _add_months(month, 1)

        transactions.sort(key=lambda t: t['date'])
        return transactions

    def spike_days(self, transactions: List[Dict]) -> List[Dict]:
        return [t for t in transactions if t['description'].startswith('UNUSUAL')]

    def _weekdays(self) -> List[date]:
        days = []
        day = self.start_date
        while day <= self.end_date:
            if day.weekday() < 5:
                days.append(day)
            day += timedelta(days=1)
        return days

    def _growth(self, day: date) -> float:
        months_elapsed = (day.year - self.start_date.year) * 12 + day.month - self.start_date.month
        return 1 + self.MONTHLY_GROWTH * months_elapsed

    def _regular_day(self, user: Dict, day: date) -> List[Dict]:
        budget = user['daily_budget'] * self._growth(day)
        count = self.rng.randint(1, 3)
        lines = []
        for i in range(count):
            account = self.rng.choice(list(self.MERCHANTS))
            amount = self.rng.uniform(0.6, 1.4) * budget / count
            lines.append({
                'user_email': user['email'],
                'account': account,
                'trans_type': DEBIT,
                'amount': Decimal(str(round(amount, 2))),
                'date': datetime.combine(day, time(9 + 3 * i, self.rng.randint(0, 59))),
                'description': self.rng.choice(self.MERCHANTS[account]),
            })
        return lines

    def _spike(self, user: Dict, day: date) -> Dict:
        multiplier = self.rng.uniform(*self.SPIKE_MULTIPLIER)
        amount = user['daily_budget'] * self._growth(day) * multiplier
        return {
            'user_email': user['email'],
            'account': 'Travel',
            'trans_type': DEBIT,
            'amount': Decimal(str(round(amount, 2))),
            'date': datetime.combine(day, time(23, 41)),
            'description': 'UNUSUAL INTERNATIONAL PURCHASE',
        }


def seed_database(db: DBSession, seed: int = 42, as_of: Optional[date] = None) -> Dict:
    """
    Insert the synthetic team and their ledger into an initialised database.

    Users are matched by email, so re-seeding does not duplicate them, but
    transactions are always appended.

    Returns:
        Counts of users and transactions written and the spike days injected.
    """
    generator = SyntheticLedgerGenerator(seed=seed, as_of=as_of)
    accounts = {a.name: a.id for a in db.query(Account).all()}

    users = {}
    for spec in generator.USERS:
        user = db.query(User).filter(User.email == spec['email']).first()
        if user is None:
            user = User(name=spec['name'], email=spec['email'], role=spec['role'])
            db.add(user)
            db.flush()
        users[spec['email']] = user.id

    transactions = generator.generate()
    db.add_all([
        Transaction(
            user_id=users[t['user_email']],
            account_id=accounts[t['account']],
            trans_type=t['trans_type'],
            amount=t['amount'],
            date=t['date'],
            description=t['description'],
        )
        for t in transactions
    ])
    db.commit()

    return {
        'users': len(users),
        'transactions': len(transactions),
        'spike_days': [t['date'].date().isoformat() for t in generator.spike_days(transactions)],
    }


def main() -> None:
    from database import SessionLocal, init_db
    from services import LedgerStore, AnomalyDetector
    from services.observability import logger

    parser = argparse.ArgumentParser(description="Seed the ledger with synthetic data.")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--run-detection", action="store_true",
                        help="run the fraud check after seeding")
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        summary = seed_database(db, seed=args.seed)
        logger.info("Synthetic ledger seeded", users=summary['users'],
                    transactions=summary['transactions'],
                    spike_days=",".join(summary['spike_days']))
        if args.run_detection:
            result = AnomalyDetector(LedgerStore(db)).run()
            logger.info("Fraud check finished", new_alerts=result.new_alerts_count)
    finally:
        db.close()


if __name__ == '__main__':
    main()
