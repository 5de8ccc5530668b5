"""Engine exceptions."""


class ScenarioConfigError(ValueError):
    """Generation-time configuration error. Fatal for the request that caused it."""


class UnknownScenarioError(ScenarioConfigError):
    def __init__(self, story_type: str):
        self.story_type = story_type
        super().__init__(f"Unknown scenario template: {story_type}")


class UnknownTechniqueError(ScenarioConfigError):
    def __init__(self, technique_id: str):
        self.technique_id = technique_id
        super().__init__(f"No atomic test registered for technique {technique_id}")


class InvalidTransitionError(ValueError):
    """Raised when a triage action would move an alert along a forbidden edge."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move alert from '{current}' to '{requested}'")
