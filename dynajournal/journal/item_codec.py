# =============================================================================
# File: dynajournal/journal/item_codec.py
# Description: Record <-> native DynamoDB item conversion
# =============================================================================
# Item layout:
#   par  (S) partition key  "<prefix>P-<stream_id>"
#   num  (N) sort key       sequence number
#   pay  (B) payload bytes
#   man  (S) manifest       (omitted when empty)
#   wrt  (S) writer uuid    (omitted when empty)
#
# Per-stream deletion marker (keeps sequence numbers from being reused):
#   par  (S) "<prefix>S-<stream_id>", num (N) 0, hsn (N) highest deleted seq
# =============================================================================

from typing import Any, Dict

from dynajournal.journal.model import Record
from dynajournal.journal.requests import AttributeMap

KEY = "par"
SORT = "num"
PAYLOAD = "pay"
MANIFEST = "man"
WRITER = "wrt"
HIGHEST_SEQUENCE_NR = "hsn"

# Guards against overwriting an existing (stream, sequence) item
PUT_IF_ABSENT = f"attribute_not_exists({SORT})"


class ItemCodec:
    """Encodes journal records as DynamoDB items under a partition-key prefix."""

    def __init__(self, key_prefix: str = ""):
        self.key_prefix = key_prefix

    def partition_key(self, stream_id: str) -> str:
        return f"{self.key_prefix}P-{stream_id}"

    def marker_partition_key(self, stream_id: str) -> str:
        return f"{self.key_prefix}S-{stream_id}"

    def key(self, stream_id: str, sequence_nr: int) -> AttributeMap:
        return {
            KEY: {"S": self.partition_key(stream_id)},
            SORT: {"N": str(sequence_nr)},
        }

    def marker_key(self, stream_id: str) -> AttributeMap:
        return {
            KEY: {"S": self.marker_partition_key(stream_id)},
            SORT: {"N": "0"},
        }

    def to_item(self, record: Record) -> AttributeMap:
        item = self.key(record.stream_id, record.sequence_nr)
        item[PAYLOAD] = {"B": bytes(record.payload)}
        if record.manifest:
            item[MANIFEST] = {"S": record.manifest}
        if record.writer_uuid:
            item[WRITER] = {"S": record.writer_uuid}
        return item

    def marker_item(self, stream_id: str, highest_sequence_nr: int) -> AttributeMap:
        item = self.marker_key(stream_id)
        item[HIGHEST_SEQUENCE_NR] = {"N": str(highest_sequence_nr)}
        return item

    def from_item(self, item: Dict[str, Any]) -> Record:
        """Decode an item read back from the journal table."""
        try:
            partition = item[KEY]["S"]
            sequence_nr = int(item[SORT]["N"])
            payload = item[PAYLOAD]["B"]
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed journal item {sorted(item)}: {e}") from e

        prefix = f"{self.key_prefix}P-"
        if not partition.startswith(prefix):
            raise ValueError(f"Item partition key {partition!r} is not a journal record key")

        return Record(
            stream_id=partition[len(prefix):],
            sequence_nr=sequence_nr,
            payload=bytes(payload),
            manifest=item.get(MANIFEST, {}).get("S", ""),
            writer_uuid=item.get(WRITER, {}).get("S", ""),
        )

    @staticmethod
    def sequence_nr_of(item: Dict[str, Any]) -> int:
        return int(item[SORT]["N"])
