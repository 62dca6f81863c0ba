"""Human-readable status text for the dashboard - just simple dictionaries"""

# Emojis for different operations
EMOJI = {
    'start': '🎬',
    'run': '🚀',
    'step': '📸',
    'success': '🎉',
    'failed': '❌',
    'error': '⚠️',
    'stopped': '🛑',
    'timeout': '⏰',
    'info': '💡',
    'heal': '🩹',
    'search': '🔍',
    'browser': '🌐'
}

# Execution statuses shown while a run is live
EXECUTION_STATUS_TEXT = {
    'starting': 'Starting test execution...',
    'connected': 'Connected to test execution stream',
    'running': 'Test execution in progress...'
}

# Healing stages with the label shown in the pipeline widget
HEALING_STAGES = {
    'detected': {
        'name': 'Locator failure detected',
        'emoji': '🔍',
        'step': 0
    },
    'analyzing': {
        'name': 'Analyzing page structure',
        'emoji': '🧠',
        'step': 1
    },
    'healing': {
        'name': 'Generating replacement locator',
        'emoji': '🩹',
        'step': 2
    },
    'fixed': {
        'name': 'Locator fixed',
        'emoji': '🎉',
        'step': 3
    },
    'failed': {
        'name': 'Healing failed',
        'emoji': '❌',
        'step': 3
    },
    'error': {
        'name': 'Healing error',
        'emoji': '⚠️',
        'step': 3
    }
}

# Error suggestions
ERROR_TIPS = {
    'spawn': [
        "Check that Node.js and Playwright are installed",
        "Verify RUNNER_COMMAND points at a working test runner"
    ],
    'missing_file': [
        "Check the test class name",
        "Verify TEST_CLASSES_DIR contains the generated spec file"
    ],
    'proposer': [
        "Check that the repair proposer service is running",
        "Verify REPAIR_PROPOSER_URL"
    ]
}


def describe_execution(record) -> str:
    """Single status line for an execution record, terminal or not."""
    status = record.status.value
    if status == 'finished':
        if record.success:
            return f"{EMOJI['success']} {record.message or 'Test execution completed successfully!'}"
        if record.success is None:
            return f"{EMOJI['info']} {record.message or 'Test execution completed'}"
        return f"{EMOJI['failed']} {record.message or 'Test execution failed'}"
    if status == 'error':
        return f"{EMOJI['error']} {record.message or 'Test execution error'}"
    if status == 'stopped':
        return f"{EMOJI['stopped']} {record.message or 'Execution stopped by user'}"
    return record.message or EXECUTION_STATUS_TEXT.get(status, status)


def describe_healing(record) -> str:
    """Single status line for a healing record."""
    stage = HEALING_STAGES[record.status.value]
    text = f"{stage['emoji']} {stage['name']}: {record.locator_key}"
    if record.status.value == 'fixed' and record.new_locator:
        text += f" ({record.old_locator} -> {record.new_locator})"
    elif record.error:
        text += f" ({record.error})"
    return text
