"""
데모 크레딧 계정 시드 스크립트
기본 플랜으로 계정을 프로비저닝하고 접속용 토큰을 출력
"""

import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta

from tradelogapi.config import settings
from tradelogapi.core.auth_middleware import create_access_token
from tradelogapi.database.connection import SessionLocal
from tradelogapi.services.credit_ledger_service import CreditLedgerService

DEMO_ACCOUNTS = [
    (1001, settings.DEFAULT_PLAN_ID, False),
    (1002, settings.DEFAULT_PLAN_ID, False),
    (9001, "staff", True),
]


def seed_credit_accounts():
    """데모 계정 프로비저닝 (이미 있으면 건너뜀)"""
    db = SessionLocal()
    try:
        ledger = CreditLedgerService(db, settings)
        for account_id, plan_id, is_admin in DEMO_ACCOUNTS:
            balance = ledger.provision_account(account_id, plan_id=plan_id)
            token = create_access_token(
                {"account_id": account_id, "is_admin": is_admin},
                expires_delta=timedelta(days=7),
            )
            print(
                f"✅ account {account_id} ({plan_id}): regular={balance.regular_credits} bonus={balance.bonus_credits}"
            )
            print(f"   token: {token}")
    except Exception as e:
        db.rollback()
        print(f"❌ 시드 데이터 생성 실패: {str(e)}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_credit_accounts()
