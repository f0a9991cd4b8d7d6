profiles_sql = """
CREATE TABLE profiles (
    id UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
    full_name TEXT,
    avatar_url TEXT,
    email TEXT,
    created_at TIMESTAMPTZ DEFAULT now()
);
"""

conversations_sql = """
CREATE TABLE conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

    user1_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    user2_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- Preview, maintained by the trigger below
    last_message TEXT,
    last_message_at TIMESTAMPTZ,

    -- Canonical ordering, so (A,B) and (B,A) share one key
    CONSTRAINT conversation_user1_less_than_user2 CHECK (user1_id < user2_id),

    -- One conversation per pair
    CONSTRAINT unique_conversation_pair UNIQUE (user1_id, user2_id)
);
"""

messages_sql = """
CREATE TABLE messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    content TEXT NOT NULL CHECK (length(btrim(content)) > 0),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX messages_conversation_created_idx
    ON messages (conversation_id, created_at);

ALTER PUBLICATION supabase_realtime ADD TABLE messages;
"""

last_message_trigger_sql = """
CREATE OR REPLACE FUNCTION set_conversation_last_message()
RETURNS TRIGGER AS $$
BEGIN
    UPDATE conversations
       SET last_message = NEW.content,
           last_message_at = NEW.created_at
     WHERE id = NEW.conversation_id;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

CREATE TRIGGER messages_set_last_message
AFTER INSERT ON messages
FOR EACH ROW EXECUTE FUNCTION set_conversation_last_message();
"""
