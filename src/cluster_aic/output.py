"""Console reporting and CSV/JSON export for result tables."""

import json
from datetime import datetime
from pathlib import Path

from cluster_aic.models import (
    AicSumTable,
    CharacteristicTable,
    FitFailure,
    MergeSequence,
)


def print_header(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def print_failure_summary(
    failures: list[tuple[object, FitFailure]], what: str = "partition"
) -> None:
    """Print failed fits grouped by reason. *failures* pairs an owner id with each failure."""
    if not failures:
        return

    print("\n" + "!" * 60)
    print(f"  WARNING: {len(failures)} column fit(s) failed")
    print("!" * 60)

    # Group by reason
    by_reason: dict[str, list[tuple[object, FitFailure]]] = {}
    for owner, f in failures:
        by_reason.setdefault(f.reason, []).append((owner, f))

    for reason, group in sorted(by_reason.items()):
        print(f"\n  {reason} ({len(group)}):")
        for owner, f in group:
            print(f"    {what} {owner!s:>6}  {f.variable:30s} [{f.family}]")


def _failure_manifest(
    output_dir: Path, output_name: str, table: AicSumTable
) -> Path:
    """Write a JSON manifest of every failed column fit in *table*."""
    manifest = {
        "family": table.family,
        "K": table.K,
        "mode": table.mode,
        "run_timestamp": datetime.now().isoformat(timespec="seconds"),
        "total_partitions": len(table),
        "complete": sum(1 for r in table if r.ok),
        "failed_count": len(table.failures()),
        "partition_errors": [
            {"index": r.index, "level": r.level, "error": r.error} for r in table if r.error
        ],
        "failures": [
            {
                "index": index,
                "variable": f.variable,
                "family": f.family,
                "reason": f.reason,
            }
            for index, f in table.failures()
        ],
    }
    manifest_path = output_dir / f"{output_name}_failure_manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    return manifest_path


def save_tables(
    output_dir: Path,
    output_name: str,
    aic_table: AicSumTable | None = None,
    characteristic: CharacteristicTable | None = None,
    merges: MergeSequence | None = None,
) -> list[Path]:
    """Save the given result tables as CSV files; returns the paths written."""
    print_header("Saving CSV files...")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    if aic_table is not None:
        aic_file = output_dir / f"{output_name}_aic.csv"
        aic_table.to_frame().write_csv(aic_file)
        print(f"  {aic_file} ({len(aic_table)} rows)")
        written.append(aic_file)
        if aic_table.failures() or any(r.error for r in aic_table):
            manifest_path = _failure_manifest(output_dir, output_name, aic_table)
            print(f"  {manifest_path}")
            written.append(manifest_path)

    if characteristic is not None:
        frame = characteristic.to_frame()
        char_file = output_dir / f"{output_name}_characteristic.csv"
        frame.write_csv(char_file)
        print(f"  {char_file} ({frame.height} rows)")
        written.append(char_file)

    if merges is not None:
        merges_file = output_dir / f"{output_name}_merges.csv"
        merges.to_frame().write_csv(merges_file)
        print(f"  {merges_file} ({len(merges.steps)} rows)")
        written.append(merges_file)

    return written
