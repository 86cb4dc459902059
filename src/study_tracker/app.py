"""Interactive CLI application."""
import logging
import os
import time
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from study_tracker.countdown import calculate_countdown, days_until
from study_tracker.dashboard import (
    calculate_dashboard_progress, get_readiness_color, get_readiness_label, get_study_stats,
)
from study_tracker.db import DEFAULT_DB_PATH, get_setting, init_db, set_setting
from study_tracker.focus import (
    FocusSessionManager, LocalSessionStore, OfflineQueue, SessionTicker, format_time,
)
from study_tracker.foundation import calculate_exam_foundation
from study_tracker.importer import export_file, import_syllabus
from study_tracker.models import Category, SessionStatus
from study_tracker.progress import CATEGORIES, format_percentage
from study_tracker.recommendations import RecommendationCache, get_recommendations
from study_tracker.review import get_due_revisions, get_weak_subjects
from study_tracker.seed import is_seeded, seed_all
from study_tracker.store import (
    add_chapter, add_subject, add_test, add_topic, load_subject, load_subjects,
    record_topic_progress, set_weightage,
)
from study_tracker.study_time import VALID_PHASES, local_transport

console = Console()

LOG_LEVEL = os.environ.get("STUDY_TRACKER_LOG_LEVEL", "WARNING")


class SessionExitRequested(Exception):
    """Raised when the user types 'q' or 'menu' inside a sub-loop."""


EXIT_WORDS = ("q", "quit", "menu")


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


def session_int_prompt(prompt: str, choices: list[str] | None = None, **kwargs) -> int:
    while True:
        answer = session_prompt(prompt, **kwargs)
        if choices and answer not in choices:
            console.print(f"[red]Choose one of: {', '.join(choices)}[/red]")
            continue
        try:
            return int(answer)
        except ValueError:
            console.print("[red]Please enter a number.[/red]")


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def build_focus_manager(db_path: str, clock=time.time) -> FocusSessionManager:
    return FocusSessionManager(
        transport=local_transport(db_path),
        store=LocalSessionStore(db_path),
        queue=OfflineQueue(db_path),
        clock=clock,
    )


def show_welcome():
    console.print(Panel(
        "[bold]Study Tracker[/bold]\n[dim]Exam preparation progress and focus sessions[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("dashboard", "Overall progress + stats"),
        ("subjects", "Browse and edit subjects"),
        ("topic", "Record topic progress"),
        ("test", "Record a test score"),
        ("recommend", "What to study next"),
        ("foundation", "Exam foundation level"),
        ("countdown", "Exam countdown + milestones"),
        ("focus", "Focus session timer"),
        ("import", "Import a syllabus (json/yaml)"),
        ("export", "Export all data"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


def progress_bar(score: float, width: int = 20) -> str:
    color = get_readiness_color(score)
    filled = int(score / 100 * width)
    return f"[{color}]{'█' * filled}{'░' * (width - filled)}[/{color}]"


def get_exam_date(db_path: str) -> date | None:
    value = get_setting(db_path, "exam_date")
    return date.fromisoformat(value) if value else None


def ensure_exam_date(db_path: str) -> date:
    exam_date = get_exam_date(db_path)
    while exam_date is None:
        answer = Prompt.ask("Exam date (YYYY-MM-DD)")
        try:
            exam_date = date.fromisoformat(answer.strip())
        except ValueError:
            console.print("[red]Invalid date.[/red]")
            continue
        set_setting(db_path, "exam_date", exam_date.isoformat())
    return exam_date


def cmd_dashboard(db_path: str):
    subjects = load_subjects(db_path)
    progress = calculate_dashboard_progress(subjects)
    stats = get_study_stats(db_path)
    overall = progress["overall"]
    color = get_readiness_color(overall)
    exam_date = get_exam_date(db_path)

    header = "Dashboard"
    if exam_date:
        header += f" - {days_until(exam_date)} days to exam"
    console.print(Panel(f"[bold]{header}[/bold]", title="Study Progress", border_style="blue"))
    console.print(
        f"\n  Overall Progress: [bold]{format_percentage(overall)}[/bold] {progress_bar(overall)} "
        f"[{color}]{get_readiness_label(overall)}[/{color}]\n"
    )
    for category in CATEGORIES:
        console.print(f"  {category.title():<10} {progress_bar(progress[category])} {format_percentage(progress[category])}")

    table = Table(title="Subjects")
    table.add_column("Subject", style="cyan")
    table.add_column("Weightage", justify="right")
    table.add_column("Overall", justify="right")
    table.add_column("Foundation")
    table.add_column("Expected Marks", justify="right")
    for s in subjects:
        sc_color = get_readiness_color(s.overall_progress)
        table.add_row(
            s.name,
            f"{s.weightage:g}",
            f"[{sc_color}]{format_percentage(s.overall_progress)}[/{sc_color}]",
            s.foundation_level.value,
            str(s.expected_marks),
        )
    console.print(table)

    topics = progress["stats"]["topics"]
    console.print(f"\n  Topics learned: [bold]{topics['completed']}/{topics['total']}[/bold]  |  "
                  f"Focus sessions: [bold]{stats['sessions_completed']}[/bold]  |  "
                  f"Focus time: [bold]{stats['focus_minutes']} min[/bold]  |  "
                  f"Tests: [bold]{stats['tests_taken']}[/bold]  |  "
                  f"Streak: [bold]{stats['current_streak']}[/bold] (best {stats['longest_streak']})")

    due = get_due_revisions(db_path)
    if due:
        console.print(f"\n  [yellow]{len(due)} topic(s) due for revision[/yellow]")
        for d in due[:5]:
            console.print(f"    [dim]{d['subject_name']} / {d['chapter_name']}:[/dim] {d['topic_name']}")
    weak = get_weak_subjects(db_path)
    if weak:
        console.print(f"\n  [red]Weak test performance:[/red] "
                      + ", ".join(f"{w['subject_name']} ({w['average']}%)" for w in weak))


def show_subject(db_path: str, subject_id: int):
    subject = load_subject(db_path, subject_id)
    if subject is None:
        console.print(f"[red]Unknown subject: {subject_id}[/red]")
        return
    console.print(Panel(
        f"Weightage {subject.weightage:g}  |  Learning {format_percentage(subject.learning_progress)}  |  "
        f"Revision {format_percentage(subject.revision_progress)}  |  "
        f"Practice {format_percentage(subject.practice_progress)}  |  Test {format_percentage(subject.test_progress)}",
        title=subject.name, border_style="cyan",
    ))
    table = Table()
    table.add_column("Topic", justify="right")
    table.add_column("Chapter / Topic")
    table.add_column("L", justify="center")
    table.add_column("R", justify="center")
    table.add_column("P", justify="center")
    table.add_column("T", justify="center")
    table.add_column("Next Revision")
    for chapter in subject.chapters:
        star = " *" if chapter.important else ""
        table.add_row("", f"[bold]{chapter.name}{star}[/bold] ({format_percentage(chapter.overall_progress)})",
                      "", "", "", "", "")
        for t in chapter.topics:
            table.add_row(
                str(t.id),
                f"  {t.name}" + (" *" if t.important else ""),
                "[green]✓[/green]" if t.learning_status else "",
                f"{t.revision_count}/3",
                f"{t.practice_count}/3",
                f"{t.test_count}/3",
                t.next_revision or "",
            )
    console.print(table)


def cmd_subjects(db_path: str, cache: RecommendationCache | None = None):
    subjects = load_subjects(db_path)
    table = Table(title="Subjects")
    table.add_column("ID", justify="right")
    table.add_column("Subject", style="cyan")
    table.add_column("Weightage", justify="right")
    table.add_column("Chapters", justify="right")
    table.add_column("Overall", justify="right")
    for s in subjects:
        table.add_row(str(s.id), s.name, f"{s.weightage:g}", str(len(s.chapters)), format_percentage(s.overall_progress))
    console.print(table)

    action = Prompt.ask("Action", choices=["view", "add-subject", "add-chapter", "add-topic", "weightage", "back"],
                        default="back")
    if action == "view":
        show_subject(db_path, IntPrompt.ask("Subject ID"))
    elif action == "add-subject":
        name = Prompt.ask("Subject name")
        weightage = float(Prompt.ask("Weightage", default="0"))
        subject_id = add_subject(db_path, name, weightage)
        console.print(f"[green]Added subject {subject_id}.[/green]")
    elif action == "add-chapter":
        subject_id = IntPrompt.ask("Subject ID")
        chapter_id = add_chapter(db_path, subject_id, Prompt.ask("Chapter name"),
                                 important=Confirm.ask("Important?", default=False))
        console.print(f"[green]Added chapter {chapter_id}.[/green]")
    elif action == "add-topic":
        chapter_id = IntPrompt.ask("Chapter ID")
        topic_id = add_topic(db_path, chapter_id, Prompt.ask("Topic name"),
                             important=Confirm.ask("Important?", default=False))
        console.print(f"[green]Added topic {topic_id}.[/green]")
    elif action == "weightage":
        subject_id = IntPrompt.ask("Subject ID")
        set_weightage(db_path, subject_id, float(Prompt.ask("Weightage")))
        console.print("[green]Weightage updated.[/green]")
    if action != "back" and cache is not None:
        cache.clear()


def cmd_topic(db_path: str, cache: RecommendationCache | None = None):
    topic_id = IntPrompt.ask("Topic ID")
    category = Prompt.ask("Progress type", choices=[c.value for c in Category], default="learning")
    topic = record_topic_progress(db_path, topic_id, category)
    if cache is not None:
        cache.clear()
    console.print(
        f"[green]{topic.name}:[/green] learned={'yes' if topic.learning_status else 'no'} "
        f"revision {topic.revision_count}/3  practice {topic.practice_count}/3  test {topic.test_count}/3"
    )
    if topic.next_revision:
        console.print(f"[dim]Next revision on {topic.next_revision}[/dim]")


def cmd_test(db_path: str, cache: RecommendationCache | None = None):
    subject_id = IntPrompt.ask("Subject ID")
    marks_scored = float(Prompt.ask("Marks scored"))
    total_marks = float(Prompt.ask("Total marks"))
    add_test(db_path, subject_id, marks_scored, total_marks)
    if cache is not None:
        cache.clear()
    subject = load_subject(db_path, subject_id)
    console.print(f"[green]Recorded {marks_scored:g}/{total_marks:g} for {subject.name}. "
                  f"Expected marks now {subject.expected_marks}.[/green]")


def cmd_recommend(db_path: str, cache: RecommendationCache | None = None):
    days_left = days_until(ensure_exam_date(db_path))
    recommendations = get_recommendations(load_subjects(db_path), days_left, cache=cache)
    for rec in recommendations:
        if not rec["subjects"]:
            continue
        table = Table(title=f"{rec['title']} - {rec['description']}")
        table.add_column("Subject", style="cyan")
        table.add_column("Weightage", justify="right")
        table.add_column("Learning", justify="right")
        table.add_column("Score", justify="right")
        for s in rec["subjects"]:
            progress = format_percentage(s["progress"])
            if s["behind_target"]:
                progress += f" [red](-{s['behind_target']:.0f})[/red]"
            table.add_row(s["name"], f"{s['weightage']:g}", progress, f"{s['score']:.1f}")
        console.print(table)
    if not any(rec["subjects"] for rec in recommendations):
        console.print("[yellow]No recommendations yet. Add subjects with weightage first.[/yellow]")


def cmd_foundation(db_path: str):
    foundation = calculate_exam_foundation(load_subjects(db_path))
    tier = foundation["current_level"]
    body = f"[bold]Level {tier.level}: {tier.title}[/bold]\n{tier.description}\n\n"
    body += f"Overall progress: {format_percentage(foundation['overall_progress'])}"
    if foundation["next_level"]:
        nxt = foundation["next_level"]
        body += (f"\nNext: Level {nxt.level} {nxt.title} "
                 f"{progress_bar(foundation['progress_to_next_level'])} "
                 f"{format_percentage(foundation['progress_to_next_level'])}")
    console.print(Panel(body, title="Exam Foundation", border_style="magenta"))
    for strength in foundation["strengths"]:
        console.print(f"  [green]+[/green] {strength}")
    for area in foundation["areas_to_improve"]:
        console.print(f"  [red]-[/red] {area}")


def cmd_countdown(db_path: str):
    exam_date = ensure_exam_date(db_path)
    progress = calculate_dashboard_progress(load_subjects(db_path))
    countdown = calculate_countdown(exam_date, {c: progress[c] for c in CATEGORIES})
    console.print(Panel(
        f"[bold]{countdown['days_left']}[/bold] days left  |  Phase: [cyan]{countdown['current_phase']}[/cyan]\n\n"
        f"{countdown['recommendation']}",
        title=f"Exam on {exam_date.isoformat()}", border_style="blue",
    ))
    table = Table(title="Milestones")
    table.add_column("Milestone")
    table.add_column("Progress", justify="right")
    table.add_column("Status")
    for m in countdown["milestones"]:
        if m["is_passed"]:
            status = "[dim]Passed[/dim]"
        elif m["is_current"]:
            status = "[yellow]Current[/yellow]"
        else:
            status = f"[cyan]In {m['days_left']} days[/cyan]"
        table.add_row(m["label"], format_percentage(m["progress"]), status)
    console.print(table)


def show_focus_status(manager: FocusSessionManager, ticker: SessionTicker):
    session = manager.session
    remaining = ticker.tick()
    current_break = session.current_break
    if current_break is not None:
        state = f"[green]On a {current_break.type.value} break[/green]"
    elif session.status is SessionStatus.PAUSED:
        state = "[yellow]Paused[/yellow]"
    else:
        state = "[cyan]Focusing[/cyan]"
    console.print(Panel(
        f"[bold]{format_time(remaining)}[/bold] remaining  |  {state}\n"
        f"Breaks: {len(session.breaks)}  |  Interruptions: {session.metrics.interruptions}  |  "
        f"Queued changes: {len(manager.queue)}",
        title=f"{session.phase_type.title()} session", border_style="cyan",
    ))
    if ticker.break_due:
        console.print("[yellow]You've been focusing for a while. Time for a break![/yellow]")


def watch_focus(manager: FocusSessionManager, ticker: SessionTicker):
    console.print("[dim]Ctrl+C to return to the session menu[/dim]")
    try:
        with Live(console=console, refresh_per_second=4) as live:
            def keep_going(t: SessionTicker) -> bool:
                live.update(f"[bold]{format_time(t.display_time)}[/bold]")
                return t.display_time > 0 and not t.break_due
            ticker.run(keep_going)
    except KeyboardInterrupt:
        pass


def start_focus_session(db_path: str, manager: FocusSessionManager) -> bool:
    subjects = load_subjects(db_path)
    for s in subjects:
        console.print(f"  [cyan]{s.id}[/cyan]) {s.name}")
    subject_id = session_int_prompt("Subject", choices=[str(s.id) for s in subjects])
    phase = session_prompt("Phase", choices=list(VALID_PHASES), default="learning")
    duration = session_int_prompt("Duration in minutes", default="50")
    skip_breaks = Confirm.ask("Skip break reminders?", default=False)
    if not manager.start(subject_id, phase, duration, skip_breaks=skip_breaks):
        console.print("[red]Could not start the session.[/red]")
        return False
    return True


def cmd_focus(db_path: str, manager: FocusSessionManager):
    if manager.session is None and not start_focus_session(db_path, manager):
        return
    ticker = SessionTicker(manager)
    actions = {
        "pause": manager.pause,
        "resume": manager.resume,
        "break": manager.start_break,
        "end-break": manager.end_break,
        "skip-break": manager.skip_break,
        "sync": lambda: manager.sync(force=True),
    }
    while manager.session is not None:
        show_focus_status(manager, ticker)
        action = session_prompt(
            "Action", choices=["watch", *actions, "stop", "menu"], default="watch",
        )
        if action == "watch":
            watch_focus(manager, ticker)
        elif action == "stop":
            session = manager.session
            ok = manager.stop()
            console.print(
                f"[green]Session complete: {format_time(session.metrics.total_focus_time)} focused, "
                f"{session.metrics.productivity}% productivity.[/green]"
                if ok else "[yellow]Session ended offline; it will sync later.[/yellow]"
            )
        elif not actions[action]():
            console.print(f"[red]Could not {action} right now.[/red]")


def cmd_import(db_path: str, cache: RecommendationCache | None = None):
    file_path = Prompt.ask("File path")
    if not Path(file_path).exists():
        console.print(f"[red]File not found: {file_path}[/red]")
        return
    result = import_syllabus(db_path, file_path)
    if cache is not None:
        cache.clear()
    console.print(f"[green]Imported {result['subjects']} subjects, {result['chapters']} chapters, "
                  f"{result['topics']} topics.[/green]")
    if result["skipped"]:
        console.print(f"[yellow]Skipped existing: {', '.join(result['skipped'])}[/yellow]")


def cmd_export(db_path: str):
    file_path = Prompt.ask("Export to", default=f"study-tracker-{date.today().isoformat()}.json")
    result = export_file(db_path, file_path)
    console.print(f"[green]Exported {result['subjects']} subjects and {result['sessions']} sessions "
                  f"to {result['filename']}[/green]")


def main():
    setup_logging()
    db_path = DEFAULT_DB_PATH
    init_db(db_path)
    first_run = not is_seeded(db_path)
    if first_run:
        console.print("[dim]Setting up for first use...[/dim]")
    seed_all(db_path)
    if first_run:
        console.print("[green]Ready![/green]\n")

    cache = RecommendationCache()
    manager = build_focus_manager(db_path)
    if manager.restore():
        console.print("[cyan]Resumed your focus session. Use 'focus' to continue.[/cyan]")
    manager.reconnect()

    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="dashboard").strip().lower()
        try:
            if choice == "dashboard":
                cmd_dashboard(db_path)
            elif choice == "subjects":
                cmd_subjects(db_path, cache)
            elif choice == "topic":
                cmd_topic(db_path, cache)
            elif choice == "test":
                cmd_test(db_path, cache)
            elif choice == "recommend":
                cmd_recommend(db_path, cache)
            elif choice == "foundation":
                cmd_foundation(db_path)
            elif choice == "countdown":
                cmd_countdown(db_path)
            elif choice == "focus":
                cmd_focus(db_path, manager)
            elif choice == "import":
                cmd_import(db_path, cache)
            elif choice == "export":
                cmd_export(db_path)
            elif choice in ("quit", "exit", "q"):
                if manager.session is not None:
                    manager.sync(force=True)
                console.print("[dim]Good luck on your exam![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except SessionExitRequested:
            console.print("[dim]Back to menu.[/dim]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
