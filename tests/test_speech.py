from thoughtsort.speech import ListenState, TranscriptAssembler, assemble_segments


def test_segments_survive_recognizer_restarts() -> None:
    assembler = TranscriptAssembler()
    assembler.start("de-DE")
    assembler.partial("buy")
    assembler.partial("buy milk")

    assert assembler.final("buy milk ") is True
    assert assembler.state == ListenState.RESTARTING
    assembler.restarted()
    assert assembler.state == ListenState.LISTENING

    assembler.partial("and")
    assembler.partial("and eggs")
    assert assembler.assemble() == "buy milk and eggs"


def test_interim_text_is_replaced_not_appended() -> None:
    assembler = TranscriptAssembler()
    assembler.start()
    assembler.partial("hel")
    assembler.partial("hello")
    assembler.partial("hello there")
    assert assembler.assemble() == "hello there"


def test_stop_finalizes_without_restart() -> None:
    assembler = TranscriptAssembler()
    assembler.start()
    assembler.final("first part")
    assembler.restarted()
    assembler.stop()

    assert assembler.state == ListenState.FINALIZING
    assert assembler.final("last part") is False
    assert assembler.finish() == "first part last part"
    assert assembler.state == ListenState.IDLE
    assert assembler.assemble() == ""


def test_recoverable_errors_restart_only_while_listening() -> None:
    assembler = TranscriptAssembler()
    assert assembler.recognizer_failed(recoverable=True) is False
    assembler.start()
    assert assembler.recognizer_failed(recoverable=False) is False
    assert assembler.recognizer_failed(recoverable=True) is True
    assert assembler.state == ListenState.RESTARTING


def test_partials_ignored_when_idle() -> None:
    assembler = TranscriptAssembler()
    assembler.partial("stray")
    assembler.final("   ")
    assert assembler.assemble() == ""


def test_assemble_segments_joins_recognizer_tasks() -> None:
    assert assemble_segments(["buy milk ", "", "  and eggs"], locale="fr-FR") == "buy milk and eggs"
    assert assemble_segments([]) == ""
