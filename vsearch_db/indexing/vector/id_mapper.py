from typing import Optional, Set, Dict, List


class IdMapper:
    """
    Manages the mapping between document keys and the internal integer node
    IDs of a vector graph.

    A key maps to at most one live node. Internal IDs are never reused: a
    replaced or deleted node stays in the graph as a tombstone until the
    graph is compacted, so its ID must keep pointing at its old key.
    """

    def __init__(self):
        # Live mapping: key -> current node
        self._key_to_internal: Dict[str, int] = {}

        # Every allocated node -> the key it was created for
        self._internal_to_key: Dict[int, str] = {}

        # Next available internal ID (sequential, never reused)
        self._next_internal_id: int = 0

    def allocate(self, key: str) -> int:
        """
        Reserve a new internal ID for ``key`` without making it the live node.
        """
        internal_id = self._next_internal_id
        self._next_internal_id += 1
        self._internal_to_key[internal_id] = key
        return internal_id

    def bind(self, key: str, internal_id: int) -> Optional[int]:
        """
        Make ``internal_id`` the live node for ``key``.

        Returns:
            The previously live node ID for the key, or None.
        """
        previous = self._key_to_internal.get(key)
        self._key_to_internal[key] = internal_id
        return previous

    def unbind(self, key: str) -> Optional[int]:
        """Remove the live mapping for ``key`` and return the node it pointed at."""
        return self._key_to_internal.pop(key, None)

    def get_internal_id(self, key: str) -> Optional[int]:
        return self._key_to_internal.get(key)

    def get_key(self, internal_id: int) -> Optional[str]:
        return self._internal_to_key.get(internal_id)

    def convert_to_internal_ids(self, keys: Set[str]) -> Set[int]:
        """
        Convert a set of keys to their live internal IDs (only those that exist).
        """
        internal_ids = set()
        for key in keys:
            internal_id = self._key_to_internal.get(key)
            if internal_id is not None:
                internal_ids.add(internal_id)
        return internal_ids

    def get_all_keys(self) -> List[str]:
        return list(self._key_to_internal.keys())

    def live_count(self) -> int:
        return len(self._key_to_internal)
