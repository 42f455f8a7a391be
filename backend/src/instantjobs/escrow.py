"""
Escrow custodian client.

The custodian holds task funds in trust (an on-chain escrow contract behind
its own Lambda function). Every call is keyed by task id and idempotent on
the custodian side, so the engine may safely retry any of them.
"""
import json
import boto3
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from .config import config
from .errors import ExternalServiceFailure
from .logging import logger


class EscrowCustodian(ABC):
    """Operations the engine consumes from the escrow custodian."""

    @abstractmethod
    def create_escrow(self, task_id: str, amount: Decimal, currency: str, deadline: datetime) -> str:
        """Lock ``amount`` for ``task_id``. Returns the escrow reference."""

    @abstractmethod
    def mark_complete(self, task_id: str) -> None:
        """Mirror the worker's completion to the custodian."""

    @abstractmethod
    def release_escrow(self, task_id: str) -> str:
        """Pay out the escrow for ``task_id``. Returns the payout transaction id."""

    @abstractmethod
    def refund_escrow(self, task_id: str) -> str:
        """Return the escrow for ``task_id`` to the requester. Returns the refund transaction id."""


class LambdaEscrowCustodian(EscrowCustodian):
    """
    Talks to the custodian by synchronously invoking its Lambda function.

    Request payload: {"action": ..., "taskId": ..., ...}
    Response payload: {"reference": ...} / {"txId": ...}, or {"error": ...}
    """

    def __init__(self, function_name: str, client=None):
        self.function_name = function_name
        self.client = client or boto3.client(
            'lambda',
            region_name=config.AWS_REGION,
            config=BotoConfig(
                connect_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                read_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                retries={'max_attempts': config.EXTERNAL_CALL_MAX_ATTEMPTS}
            )
        )

    @classmethod
    def from_config(cls) -> 'LambdaEscrowCustodian':
        return cls(config.ESCROW_FUNCTION_NAME)

    def _invoke(self, action: str, task_id: str, **params) -> dict:
        payload = {'action': action, 'taskId': task_id, **params}
        try:
            response = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType='RequestResponse',
                Payload=json.dumps(payload, default=str).encode('utf-8')
            )
            raw = response['Payload'].read()
            result = json.loads(raw) if raw else {}
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Escrow custodian {action} failed for task {task_id}: {e}")
            raise ExternalServiceFailure(f"Escrow custodian {action} failed: {e}") from e
        except ValueError as e:
            logger.error(f"Escrow custodian returned malformed payload for {action}: {e}")
            raise ExternalServiceFailure(f"Escrow custodian {action} returned malformed payload") from e

        if response.get('FunctionError') or (isinstance(result, dict) and result.get('error')):
            detail = result
            if isinstance(result, dict):
                detail = result.get('error') or result.get('errorMessage')
            logger.error(f"Escrow custodian {action} rejected task {task_id}: {detail}")
            raise ExternalServiceFailure(f"Escrow custodian {action} failed: {detail}")

        logger.info(f"Escrow custodian {action} succeeded for task {task_id}")
        return result if isinstance(result, dict) else {}

    def create_escrow(self, task_id: str, amount: Decimal, currency: str, deadline: datetime) -> str:
        result = self._invoke(
            'createEscrow',
            task_id,
            amount=str(amount),
            currency=currency,
            deadline=int(deadline.timestamp())
        )
        reference = result.get('reference')
        if not reference:
            raise ExternalServiceFailure("Escrow custodian createEscrow returned no reference")
        return reference

    def mark_complete(self, task_id: str) -> None:
        self._invoke('markComplete', task_id)

    def release_escrow(self, task_id: str) -> str:
        return self._invoke('releaseEscrow', task_id).get('txId', '')

    def refund_escrow(self, task_id: str) -> str:
        return self._invoke('refundEscrow', task_id).get('txId', '')
