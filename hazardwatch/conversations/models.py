conversations_sql = """
CREATE TABLE conversations (
    id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
    uuid UUID NOT NULL UNIQUE DEFAULT gen_random_uuid(),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

conversation_participants_sql = """
CREATE TABLE conversation_participants (
    conversation_id BIGINT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    PRIMARY KEY (conversation_id, user_id)
);

CREATE INDEX conversation_participants_user_idx ON conversation_participants (user_id);
"""

direct_conversations_sql = """
CREATE TABLE direct_conversations (
    conversation_id BIGINT PRIMARY KEY REFERENCES conversations(id) ON DELETE CASCADE,

    user1_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    user2_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- Enforce canonical ordering
    CONSTRAINT user1_less_than_user2 CHECK (user1_id < user2_id),

    -- Ensure only one conversation per user pair
    CONSTRAINT unique_direct_pair UNIQUE (user1_id, user2_id)
);
"""

# Called through supabase.rpc(). A function body runs in one transaction, so
# either all four rows exist afterwards or none do. A concurrent creator for
# the same pair fails on unique_direct_pair with SQLSTATE 23505.
create_direct_conversation_sql = """
CREATE OR REPLACE FUNCTION create_direct_conversation(user_a BIGINT, user_b BIGINT)
RETURNS BIGINT
LANGUAGE plpgsql
AS $$
DECLARE
    new_id BIGINT;
BEGIN
    IF user_a = user_b THEN
        RAISE EXCEPTION 'cannot create a conversation with yourself'
            USING ERRCODE = '22023';
    END IF;

    INSERT INTO conversations DEFAULT VALUES RETURNING id INTO new_id;

    INSERT INTO conversation_participants (conversation_id, user_id)
    VALUES (new_id, user_a), (new_id, user_b);

    INSERT INTO direct_conversations (conversation_id, user1_id, user2_id)
    VALUES (new_id, LEAST(user_a, user_b), GREATEST(user_a, user_b));

    RETURN new_id;
END;
$$;
"""
