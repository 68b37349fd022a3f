# Method names of the Agent Client Protocol wire dialect spoken by acp_host.
AGENT_METHODS = {'authenticate': 'authenticate', 'initialize': 'initialize', 'session_cancel': 'session/cancel', 'session_load': 'session/load', 'session_new': 'session/new', 'session_prompt': 'session/prompt', 'session_set_mode': 'session/set_mode', 'session_set_model': 'session/set_model'}
CLIENT_METHODS = {'session_request_permission': 'session/request_permission', 'session_update': 'session/update'}
PROTOCOL_VERSION = 1
