"""Run report artifacts: JSON summary and JUnit XML."""

from __future__ import annotations

from pathlib import Path
import xml.etree.ElementTree as ET

from .models import RunReport


def write_json_report(report: RunReport, path: Path) -> Path:
    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2, by_alias=True), encoding="utf-8")
    return path


def write_junit_report(report: RunReport, path: Path) -> Path:
    """One testcase per scenario; failures carry the scenario notes."""

    suite = ET.Element(
        "testsuite",
        attrib={
            "name": "stoney",
            "tests": str(report.total),
            "failures": str(report.failed),
            "time": str(sum(result.duration_ms for result in report.results) / 1000),
        },
    )
    for result in report.results:
        case = ET.SubElement(
            suite,
            "testcase",
            attrib={
                "classname": f"{result.suite}.{result.contract}",
                "name": result.id,
                "time": str(result.duration_ms / 1000),
            },
        )
        if not result.ok:
            failure = ET.SubElement(
                case,
                "failure",
                attrib={"message": result.notes[0] if result.notes else "Scenario failed"},
            )
            failure.text = "\n".join(result.notes)

    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(suite).write(path, encoding="utf-8", xml_declaration=True)
    return path
