"""
Escrow of incentive payments attached to permission requests.

Value carried by an incentive-based request is held against the request id
until the request is approved (released to the owner) or rejected/expired
(refunded to the requester). Released and refunded amounts accumulate in a
withdrawable balance per address.
"""

from medshare.models import LedgerState


class IncentiveEscrow:
    def __init__(self, state: LedgerState):
        self.state = state

    def hold(self, request_id: str, amount: int):
        if amount:
            self.state.escrow[request_id] = self.state.escrow.get(request_id, 0) + amount

    def _pay_out(self, request_id: str, recipient: str) -> int:
        amount = self.state.escrow.pop(request_id, 0)
        if amount:
            self.state.balances[recipient] = self.state.balances.get(recipient, 0) + amount
        return amount

    def release(self, request_id: str, owner: str) -> int:
        """Pay the escrowed incentive to the record owner"""
        return self._pay_out(request_id, owner)

    def refund(self, request_id: str, requester: str) -> int:
        """Return the escrowed incentive to the requester"""
        return self._pay_out(request_id, requester)

    def balance_of(self, address: str) -> int:
        return self.state.balances.get(address, 0)
