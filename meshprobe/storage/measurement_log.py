"""
CSV log of measurements run from this machine.
"""

import csv
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger

from meshprobe.core.models import Measurement


class MeasurementLog:
    """Append-only CSV record of measurement runs."""

    def __init__(self, csv_file: Path):
        """
        Initialize measurement log.

        Args:
            csv_file: Path to CSV file
        """
        self.csv_file = csv_file
        self.fieldnames = [
            'timestamp',
            'command',
            'target',
            'locations',
            'measurement_id',
            'status',
            'probes',
        ]

        # Create CSV file with headers if it doesn't exist
        if not csv_file.exists():
            self._create_csv()

    def _create_csv(self):
        """Create CSV file with headers."""
        self.csv_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.csv_file, 'w', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.fieldnames)
            writer.writeheader()

        logger.debug(f"Created measurement log: {self.csv_file}")

    def record(
        self,
        command: str,
        target: str,
        locations: str,
        measurement: Measurement,
        timestamp: Optional[datetime] = None,
    ):
        """
        Append one measurement run.

        Args:
            command: Measurement type (ping, dns, ...)
            target: Measurement target
            locations: Locator expression as typed by the user
            measurement: Measurement in its last known state
            timestamp: Run time, defaults to now
        """
        row = {
            'timestamp': (timestamp or datetime.now()).isoformat(timespec='seconds'),
            'command': command,
            'target': target,
            'locations': locations,
            'measurement_id': measurement.id,
            'status': measurement.status.value,
            'probes': len(measurement.results),
        }

        with open(self.csv_file, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.fieldnames)
            writer.writerow(row)

        logger.debug(f"Logged measurement {measurement.id}")

    def read_entries(self, limit: Optional[int] = None) -> List[dict]:
        """
        Read logged runs, newest first.

        Args:
            limit: Maximum number of entries

        Returns:
            List of row dictionaries
        """
        if not self.csv_file.exists():
            return []

        with open(self.csv_file, 'r', newline='') as f:
            entries = list(csv.DictReader(f))

        entries.reverse()
        return entries[:limit] if limit else entries
