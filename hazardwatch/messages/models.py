messages_sql = """
CREATE TABLE messages (
    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
    uuid UUID NOT NULL UNIQUE DEFAULT gen_random_uuid(),
    conversation_id BIGINT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    content TEXT NOT NULL CHECK (length(btrim(content)) > 0),
    message_type TEXT NOT NULL DEFAULT 'text',
    read_at TIMESTAMPTZ,
    -- clock_timestamp() rather than now(): ids and timestamps must agree on order
    created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);

CREATE INDEX messages_conversation_order_idx ON messages (conversation_id, created_at, id);
CREATE INDEX messages_sender_idx ON messages (sender_id);
"""

# read_at may only move from NULL to a timestamp
messages_read_at_guard_sql = """
CREATE OR REPLACE FUNCTION messages_read_at_guard()
RETURNS TRIGGER
LANGUAGE plpgsql
AS $$
BEGIN
    IF OLD.read_at IS NOT NULL AND NEW.read_at IS DISTINCT FROM OLD.read_at THEN
        RAISE EXCEPTION 'read_at is already set';
    END IF;
    IF (NEW.content, NEW.sender_id, NEW.conversation_id, NEW.message_type, NEW.created_at)
       IS DISTINCT FROM
       (OLD.content, OLD.sender_id, OLD.conversation_id, OLD.message_type, OLD.created_at) THEN
        RAISE EXCEPTION 'messages are immutable';
    END IF;
    RETURN NEW;
END;
$$;

CREATE TRIGGER messages_read_at_guard
BEFORE UPDATE ON messages
FOR EACH ROW EXECUTE FUNCTION messages_read_at_guard();
"""

# Inbox reads: one row per conversation, so the inbox costs a fixed number of queries
conversation_last_messages_sql = """
CREATE VIEW conversation_last_messages AS
SELECT DISTINCT ON (conversation_id)
    id, uuid, conversation_id, sender_id, content, message_type, created_at, read_at
FROM messages
ORDER BY conversation_id, created_at DESC, id DESC;
"""

conversation_unread_counts_sql = """
CREATE VIEW conversation_unread_counts AS
SELECT conversation_id, sender_id, count(*) AS unread_count
FROM messages
WHERE read_at IS NULL
GROUP BY conversation_id, sender_id;

CREATE INDEX messages_unread_idx ON messages (conversation_id, sender_id) WHERE read_at IS NULL;
"""
