from conftest import make_joke, make_timeline
from script_analyzer.stages.script_metrics import (
    core_metrics,
    diagnose_gaps,
    gap_severity,
    laugh_distribution,
    pacing_analysis,
    script_metadata,
)


def test_script_metadata_counts_non_blank_lines():
    meta = script_metadata("INT. BAR - NIGHT\n\nGARY: Hi.\n   \nLINDA: Bye.\n")
    assert meta.to_dict() == {"totalLines": 3, "totalPages": 1, "estimatedDuration": 1}
    assert script_metadata("").total_pages == 0
    assert script_metadata("line\n" * 56).total_pages == 2


def test_core_metrics():
    jokes = [
        make_joke(0, complexity="Basic"),
        make_joke(10, complexity="High-Complexity"),
        make_joke(20, complexity="Unrated"),
        make_joke(30, complexity="Standard"),
        make_joke(40, complexity="Advanced"),
    ]
    metrics = core_metrics(jokes, make_timeline(50))
    assert metrics.total_jokes == 5
    assert metrics.laughs_per_minute == 1.0
    assert metrics.joke_density == 10.0
    # (1 + 5 + 2 + 4) / 4, unrated complexity ignored
    assert metrics.average_joke_complexity == 3.0


def test_core_metrics_without_jokes():
    metrics = core_metrics([], [])
    assert metrics.to_dict() == {
        "laughsPerMinute": 0.0,
        "jokeDensity": 0.0,
        "totalJokes": 0,
        "averageJokeComplexity": 0.0,
    }


def test_pacing_rhythm_and_spacing():
    jokes = [make_joke(p) for p in (0, 10, 40, 150)]
    out = pacing_analysis(jokes, make_timeline(100))

    # the joke at 150 lies past the end of the script
    assert [(r.position, r.intensity, r.time) for r in out.rhythm] == [
        (0, 10.0, "0:00"), (10, 5.0, "1:00"), (40, 2.5, "4:00"),
    ]
    assert out.average_time_between_jokes == 20.0
    assert out.pacing_score == 5.8


def test_pacing_single_and_no_jokes():
    single = pacing_analysis([make_joke(5)], make_timeline(100))
    assert single.pacing_score == 6.7
    assert single.average_time_between_jokes == 0.0

    assert pacing_analysis([], []).to_dict() == {
        "pacingScore": 0.0,
        "rhythm": [],
        "averageTimeBetweenJokes": 0.0,
    }


def test_laugh_distribution_by_page_and_act():
    jokes = [make_joke(p) for p in (0, 5, 15, 25)]
    out = laugh_distribution(jokes, make_timeline(30))

    assert [(d.page, d.position, d.count) for d in out.distribution] == [
        (1, 0, 2), (2, 10, 1), (3, 20, 1),
    ]
    assert [(a.act, a.joke_count, a.percentage) for a in out.act_breakdown] == [
        (1, 2, 50.0), (2, 1, 25.0), (3, 1, 25.0),
    ]


def test_gap_diagnosis():
    jokes = [make_joke(p) for p in (5, 20, 70)]
    out = diagnose_gaps(jokes, make_timeline(100))

    assert [(g.start, g.end, g.severity) for g in out.gaps] == [
        (5, 20, "low"), (20, 70, "critical"), (70, 100, "medium"),
    ]
    assert out.total_gaps == 3
    assert out.longest_gap == 50
    assert out.average_gap_length == 31.7
    assert out.retention_cliff.position == 20
    assert out.retention_cliff.impact_score == 10.0
    assert out.retention_cliff.description == (
        "Audience attention drops after 2:00: 5 minutes without a joke"
    )


def test_gap_diagnosis_without_cliff():
    jokes = [make_joke(p) for p in range(0, 100, 8)]
    out = diagnose_gaps(jokes, make_timeline(100))
    assert out.gaps == []
    assert out.retention_cliff is None
    assert out.to_dict()["gapMetrics"] == {
        "totalGaps": 0, "longestGap": 0, "averageGapLength": 0.0,
    }


def test_gap_severity_bounds():
    assert gap_severity(11) == "low"
    assert gap_severity(21) == "medium"
    assert gap_severity(30) == "medium"
    assert gap_severity(31) == "high"
    assert gap_severity(41) == "critical"
