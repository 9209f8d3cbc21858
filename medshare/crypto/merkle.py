"""
Merkle tree over ledger event hashes.

Leaves are the hex hashes of committed ledger events, so a single root
commits to the whole audit history and an inclusion proof shows that one
event belongs to it.
"""

import hashlib

EMPTY_ROOT = hashlib.sha256(b"").hexdigest()


def _node(left, right):
    """Hash two child nodes (hex) into their parent"""
    return hashlib.sha256(bytes.fromhex(left) + bytes.fromhex(right)).hexdigest()


class MerkleTree:
    def __init__(self, leaf_hashes):
        self.leaves = list(leaf_hashes)
        self.levels = self._build_levels()

    def _build_levels(self):
        """Build every level from the leaves up to the root"""
        if not self.leaves:
            return [[EMPTY_ROOT]]

        levels = [self.leaves]
        while len(levels[-1]) > 1:
            level = levels[-1]
            parents = []
            for i in range(0, len(level), 2):
                if i + 1 < len(level):
                    parents.append(_node(level[i], level[i + 1]))
                else:
                    # Odd node is promoted unchanged
                    parents.append(level[i])
            levels.append(parents)
        return levels

    @property
    def root(self):
        return self.levels[-1][0]

    def proof(self, index):
        """Sibling path for the leaf at `index`, ordered leaf to root"""
        if index < 0 or index >= len(self.leaves):
            raise IndexError(f"No leaf at index {index}")

        path = []
        for level in self.levels[:-1]:
            sibling = index ^ 1
            if sibling < len(level):
                path.append({
                    'position': 'left' if sibling < index else 'right',
                    'hash': level[sibling],
                })
            index //= 2
        return path


def merkle_root(leaf_hashes):
    """Merkle root over a sequence of hex leaf hashes"""
    return MerkleTree(leaf_hashes).root


def verify_proof(leaf_hash, path, root):
    """Check that `leaf_hash` is included under `root`"""
    current = leaf_hash
    for step in path:
        if step['position'] == 'left':
            current = _node(step['hash'], current)
        else:
            current = _node(current, step['hash'])
    return current == root
