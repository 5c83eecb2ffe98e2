# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

import threading


class EphemeralStateStore:
    """
    Process-local flags keyed by (chat_id, topic_id).

    Only the "awaiting a new system prompt" flag lives here. Nothing is
    persisted; a restart forgets a pending edit.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._awaiting_system_prompt = {}

    def is_awaiting_system_prompt(self, key) -> bool:
        with self._lock:
            return self._awaiting_system_prompt.get(key, False)

    def set_awaiting_system_prompt(self, key, value: bool = True):
        with self._lock:
            if value:
                self._awaiting_system_prompt[key] = True
            else:
                self._awaiting_system_prompt.pop(key, None)

    def clear(self, key):
        self.set_awaiting_system_prompt(key, False)
