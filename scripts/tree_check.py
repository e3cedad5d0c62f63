import sys
from collections import Counter
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src" / "backend"))

import db
import tree


def main() -> int:
    rows = db.fetch_all_rows()
    reachable = {row["id"] for row in db.fetch_closure()}
    problems = tree.find_tree_problems(rows)

    unreachable = [row["id"] for row in rows if row["id"] not in reachable]
    depth_counts: Counter[int] = Counter()
    parents = {row["id"]: row["parent_id"] for row in rows}
    for animal_id in reachable:
        depth = 0
        current = parents[animal_id]
        while current is not None:
            depth += 1
            current = parents[current]
        depth_counts[depth] += 1

    lines: list[str] = []
    lines.append("Tree checks:")
    lines.append(f"- Total animals: {len(rows)}")
    lines.append(f"- Reachable from root: {len(reachable)}")
    lines.append(f"- Unreachable: {len(unreachable)}")
    lines.append(f"- Max depth: {max(depth_counts) if depth_counts else 0}")
    lines.append(f"- Problems: {len(problems)}")

    if depth_counts:
        lines.append("")
        lines.append("Animals per depth:")
        for depth in sorted(depth_counts):
            lines.append(f"  {depth}: {depth_counts[depth]}")

    if unreachable:
        lines.append("")
        lines.append("Sample unreachable animals:")
        lines.append("  " + ", ".join(str(a) for a in unreachable[:10]))

    if problems:
        lines.append("")
        lines.append("Problems:")
        for problem in problems:
            lines.append(f"  {problem}")

    print("\n".join(lines))
    return 1 if problems else 0


if __name__ == "__main__":
    sys.exit(main())
